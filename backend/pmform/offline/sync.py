# backend/pmform/offline/sync.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from ..clients.form_api import FormApiClient, RateLimitedError, SubmitError, ValidationRejected
from ..config import settings
from ..domain.messages import MSG_QUEUED_OFFLINE, MSG_QUEUE_WRITE_FAILED, sync_result_message
from .drafts import DraftStore
from .network import NetworkMonitor
from .queue import OfflineQueue, QueuePersistenceError, SyncResult

log = logging.getLogger("pmform.sync")


class SyncCoordinator:
    """
    Drains the offline queue when connectivity comes back.

    On an offline->online transition a sync is scheduled after a short settle
    delay. is_syncing keeps passes from overlapping: the queue list is
    read-modify-written as a whole, so two concurrent passes would lose updates.
    """

    def __init__(
        self,
        queue: OfflineQueue,
        monitor: NetworkMonitor,
        *,
        settle_seconds: float | None = None,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self.queue = queue
        self.monitor = monitor
        self.settle_seconds = float(settings.reconnect_settle_seconds if settle_seconds is None else settle_seconds)
        self.notify = notify

        self.is_syncing = False
        self.last_result: Optional[SyncResult] = None
        self._settle_task: asyncio.Task | None = None
        self._active_task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_network_change)
        if self.monitor.is_online and self.queue.has_pending_submissions():
            self.schedule_sync()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_settle()

    def _on_network_change(self, online: bool) -> None:
        if online:
            log.info("Network restored, scheduling sync in %ss", self.settle_seconds)
            self.schedule_sync()
        else:
            self._cancel_settle()

    def _cancel_settle(self) -> None:
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = None

    def schedule_sync(self) -> None:
        self._cancel_settle()
        self._settle_task = asyncio.get_running_loop().create_task(self._delayed_sync())

    async def _delayed_sync(self) -> None:
        await asyncio.sleep(self.settle_seconds)
        # Past the settle window: a later reconnect must not cancel a running pass
        self._active_task = asyncio.current_task()
        if self._settle_task is self._active_task:
            self._settle_task = None
        try:
            await self.sync_now()
        finally:
            self._active_task = None

    async def wait_idle(self) -> None:
        for task in (self._settle_task, self._active_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def sync_now(self, *, force: bool = False) -> Optional[SyncResult]:
        """
        One guarded pass. None when skipped: already syncing, offline, or nothing
        queued. force only waives the nothing-queued check.
        """
        if self.is_syncing:
            log.info("Sync already in progress, skipping")
            return None
        if self.monitor.is_offline:
            return None
        if not force and not self.queue.has_pending_submissions():
            return None

        self.is_syncing = True
        try:
            result = await self.queue.sync()
        except Exception:
            log.exception("Sync error")
            return None
        finally:
            self.is_syncing = False

        self.last_result = result
        msg = sync_result_message(result.successful, result.failed)
        if msg and self.notify is not None:
            self.notify(msg)
        return result

    async def resend(self) -> Optional[SyncResult]:
        """Manual "send again": failed items go back to pending, then one pass."""
        if self.monitor.is_offline:
            log.info("Resend skipped while offline")
            return None
        self.queue.retry_failed_submissions()
        return await self.sync_now(force=True)

    @property
    def pending_count(self) -> int:
        stats = self.queue.get_queue_stats()
        return stats.pending + stats.failed


@dataclass(frozen=True)
class SubmitOutcome:
    status: str  # submitted|queued|rejected|error
    message: str = ""
    submission_id: Optional[str] = None
    queue_id: Optional[str] = None
    errors: list[dict[str, Any]] = field(default_factory=list)


class SubmissionService:
    """
    The form's submit action on a field terminal.

    Online: POST directly and clear the draft on success. Offline, or when the
    request fails for reasons other than bad data, the payload goes into the
    offline queue instead of being dropped.
    """

    def __init__(
        self,
        api: FormApiClient,
        queue: OfflineQueue,
        monitor: NetworkMonitor,
        *,
        drafts: DraftStore | None = None,
        form_id: str | None = None,
    ) -> None:
        self.api = api
        self.queue = queue
        self.monitor = monitor
        self.drafts = drafts
        self.form_id = form_id

    def _enqueue(self, data: Any, reason: str) -> SubmitOutcome:
        try:
            queue_id = self.queue.enqueue(data)
        except QueuePersistenceError as e:
            log.error("Could not queue submission (%s): %s", reason, e)
            return SubmitOutcome(status="error", message=MSG_QUEUE_WRITE_FAILED)
        log.info("Submission queued (%s)", reason, extra={"queue_id": queue_id})
        return SubmitOutcome(status="queued", message=MSG_QUEUED_OFFLINE, queue_id=queue_id)

    async def submit(self, data: Any) -> SubmitOutcome:
        if self.monitor.is_offline:
            return self._enqueue(data, "offline")

        try:
            receipt = await self.api.submit_form(data)
        except ValidationRejected as e:
            return SubmitOutcome(status="rejected", message=str(e), errors=e.errors)
        except RateLimitedError as e:
            self.queue.pause(e.retry_after)
            return self._enqueue(data, "rate_limited")
        except (SubmitError, httpx.HTTPError) as e:
            log.warning("Direct submit failed: %s", e)
            return self._enqueue(data, "submit_failed")

        if self.drafts is not None and self.form_id:
            self.drafts.remove_draft(self.form_id)
        return SubmitOutcome(status="submitted", message=receipt.message, submission_id=receipt.submission_id)
