# backend/pmform/cli/__main__.py
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

from pmform.clients.form_api import FormApiClient
from pmform.config import settings
from pmform.db import create_local_engine
from pmform.domain.messages import relative_age_label
from pmform.logging_config import configure_logging
from pmform.offline.drafts import DraftStore
from pmform.offline.network import PollingNetworkMonitor
from pmform.offline.queue import OfflineQueue
from pmform.offline.storage import LocalStore
from pmform.offline.sync import SyncCoordinator

log = logging.getLogger("pmform.cli")


def _store(args) -> LocalStore:
    return LocalStore(create_local_engine(args.store_url))


def _queue(args) -> OfflineQueue:
    api = FormApiClient(base_url=args.api_base_url)
    return OfflineQueue(_store(args), api.submit_form)


def _print(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, default=str))


async def _sync(args, *, resend: bool) -> dict:
    queue = _queue(args)
    monitor = PollingNetworkMonitor(health_url=args.api_base_url.rstrip("/") + settings.health_path)
    await monitor.check_connectivity()
    coordinator = SyncCoordinator(queue, monitor, notify=log.info)

    if resend:
        result = await coordinator.resend()
    else:
        result = await coordinator.sync_now()

    return {
        "ok": result is not None,
        "online": monitor.is_online,
        "result": asdict(result) if result is not None else None,
        "stats": queue.get_queue_stats().as_dict(),
    }


def main() -> None:
    p = argparse.ArgumentParser(prog="pmform")
    p.add_argument("--store-url", default=settings.local_store_url)
    p.add_argument("--api-base-url", default=settings.api_base_url)
    p.add_argument("--log-format", choices=("json", "text"), default="text")
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="run the submission API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    sub.add_parser("queue-stats", help="counts per status in the offline queue")
    sub.add_parser("sync", help="one sync pass if the server is reachable")
    sub.add_parser("retry-failed", help="reset failed items to pending and sync")
    sub.add_parser("clear-queue", help="drop every queued submission")
    sub.add_parser("drafts", help="list saved drafts")
    clear_draft = sub.add_parser("clear-draft", help="discard one form's draft")
    clear_draft.add_argument("form_id")

    args = p.parse_args()
    if args.cmd == "serve":
        import uvicorn

        configure_logging()
        uvicorn.run("pmform.main:app", host=args.host, port=args.port, log_config=None)
        return

    # stdout carries the command result; log lines go to stderr
    configure_logging(fmt=args.log_format, stream=sys.stderr)

    if args.cmd == "queue-stats":
        _print(_queue(args).get_queue_stats().as_dict())
    elif args.cmd == "sync":
        _print(asyncio.run(_sync(args, resend=False)))
    elif args.cmd == "retry-failed":
        _print(asyncio.run(_sync(args, resend=True)))
    elif args.cmd == "clear-queue":
        _queue(args).clear()
        _print({"ok": True})
    elif args.cmd == "drafts":
        drafts = DraftStore(_store(args))
        _print(
            [
                {"form_id": fid, "age": relative_age_label(drafts.get_draft_age(fid))}
                for fid in drafts.get_all_drafts()
            ]
        )
    elif args.cmd == "clear-draft":
        ok = DraftStore(_store(args)).remove_draft(args.form_id)
        _print({"ok": ok.ok, "error": ok.error})


if __name__ == "__main__":
    main()
