# backend/pmform/offline/network.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

import httpx

from ..config import settings
from .drafts import _utcnow

log = logging.getLogger("pmform.network")

Listener = Callable[[bool], None]


class NetworkMonitor:
    """
    Online/offline state fed by platform connectivity notifications.

    Whatever observes the OS network calls handle_online()/handle_offline().
    Listeners are told about real transitions only, with the new state.
    Reacting to a reconnect (e.g. syncing the queue) is the listener's job.
    """

    def __init__(self, *, initially_online: bool = True) -> None:
        self.is_online = bool(initially_online)
        self.last_online: Optional[datetime] = None
        self.last_offline: Optional[datetime] = None
        self._listeners: list[Listener] = []

        if self.is_online:
            self.last_online = _utcnow()
        else:
            self.last_offline = _utcnow()

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, online: bool, *, source: str) -> bool:
        if online == self.is_online:
            return False

        self.is_online = online
        if online:
            self.last_online = _utcnow()
            log.info("Network: Online (%s)", source)
        else:
            self.last_offline = _utcnow()
            log.info("Network: Offline (%s)", source)

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                log.exception("network listener failed")
        return True

    def handle_online(self) -> bool:
        return self._set(True, source="platform")

    def handle_offline(self) -> bool:
        return self._set(False, source="platform")


class PollingNetworkMonitor(NetworkMonitor):
    """
    NetworkMonitor plus a periodic HEAD against a health endpoint, for links
    the platform reports as up but that do not reach the server (captive
    portals, dead uplinks).

    A poll only changes state when it disagrees with the current state. Any
    HTTP reply means the server is reachable, whatever its status (a 429 from
    the rate limiter included); only a transport error or a timeout counts as
    offline.
    """

    def __init__(
        self,
        *,
        health_url: str | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
        initially_online: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(initially_online=initially_online)
        self.health_url = health_url or (settings.api_base_url.rstrip("/") + settings.health_path)
        self.poll_interval = float(settings.health_poll_interval_seconds if poll_interval is None else poll_interval)
        self.timeout = float(settings.health_timeout_seconds if timeout is None else timeout)
        self._transport = transport
        self._task: asyncio.Task | None = None

    async def probe(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.head(self.health_url, headers={"Cache-Control": "no-cache"})
            if not r.is_success:
                log.debug("health probe status=%s", r.status_code)
            return True
        except httpx.HTTPError as e:
            log.debug("health probe failed: %s", e)
            return False

    async def check_connectivity(self) -> bool:
        ok = await self.probe()
        if ok and not self.is_online:
            log.info("Network: Connectivity restored (polling)")
            self._set(True, source="poll")
        elif not ok and self.is_online:
            log.info("Network: Connectivity lost (polling)")
            self._set(False, source="poll")
        return ok

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.check_connectivity()
            except Exception:
                log.exception("connectivity check crashed")
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
