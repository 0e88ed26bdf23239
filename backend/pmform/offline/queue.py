# backend/pmform/offline/queue.py
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..clients.form_api import RateLimitedError
from ..config import settings
from .storage import LocalStore, StorageResult

log = logging.getLogger("pmform.queue")

# -----------------------------------------------------------------------------
# Offline submission queue
# -----------------------------------------------------------------------------
# The whole list is stored under one key and rewritten after every single-item
# transition, so a crash mid-pass leaves a resumable list behind.
#
#   pending -> syncing -> completed
#                      -> pending   (retries < max_retries)
#                      -> failed    (retries >= max_retries)
#   failed  -> pending  (retry_failed_submissions)
#
# Delivery is at-least-once: if the process dies after the server accepted an
# item but before "completed" is written, the next pass sends it again. The
# item id goes out as Idempotency-Key so the server can replay instead of
# appending twice while it still remembers the key.
#
# One pass at a time. The caller guards sync() (see SyncCoordinator).
# -----------------------------------------------------------------------------

QUEUE_KEY = "offline_queue"

PENDING = "pending"
SYNCING = "syncing"
FAILED = "failed"
COMPLETED = "completed"
STATUSES = (PENDING, SYNCING, FAILED, COMPLETED)


class QueuePersistenceError(RuntimeError):
    pass


class SubmitFn(Protocol):
    def __call__(self, data: Any, *, idempotency_key: Optional[str] = None) -> Awaitable[Any]: ...


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    return f"submission_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


@dataclass
class QueuedSubmission:
    id: str
    data: Any
    queued_at: str
    retries: int = 0
    status: str = PENDING
    error: Optional[str] = None
    last_attempt: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "data": self.data,
            "queuedAt": self.queued_at,
            "retries": self.retries,
            "status": self.status,
            "error": self.error,
            "lastAttempt": self.last_attempt,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QueuedSubmission":
        status = raw.get("status")
        return cls(
            id=str(raw["id"]),
            data=raw.get("data"),
            queued_at=str(raw.get("queuedAt") or ""),
            retries=int(raw.get("retries") or 0),
            status=status if status in STATUSES else PENDING,
            error=raw.get("error"),
            last_attempt=raw.get("lastAttempt"),
        )


@dataclass(frozen=True)
class SyncResult:
    successful: int
    failed: int
    total: int
    deferred: int = 0


@dataclass(frozen=True)
class QueueStats:
    total: int
    pending: int
    syncing: int
    failed: int
    completed: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


ProgressFn = Callable[[int, int, QueuedSubmission], None]


class OfflineQueue:
    def __init__(
        self,
        store: LocalStore,
        submit: SubmitFn | None = None,
        *,
        max_retries: int | None = None,
        item_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.submit = submit
        self.max_retries = int(settings.queue_max_retries if max_retries is None else max_retries)
        self.item_delay = float(settings.queue_item_delay_seconds if item_delay is None else item_delay)
        self._sleep = sleep
        self._clock = clock
        self._paused_until = 0.0

    # -----------------------------
    # Persistence
    # -----------------------------
    def get_queue(self) -> list[QueuedSubmission]:
        raw = self.store.get(QUEUE_KEY)
        if not isinstance(raw, list):
            return []
        items: list[QueuedSubmission] = []
        for entry in raw:
            try:
                items.append(QueuedSubmission.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                log.error("Dropping unreadable queue entry: %s", e)
        return items

    def _save(self, items: list[QueuedSubmission]) -> StorageResult:
        return self.store.set(QUEUE_KEY, [it.to_dict() for it in items])

    # -----------------------------
    # Mutations
    # -----------------------------
    def enqueue(self, data: Any) -> str:
        items = self.get_queue()
        item = QueuedSubmission(id=_generate_id(), data=data, queued_at=_utcnow_iso())
        items.append(item)

        result = self._save(items)
        if not result:
            raise QueuePersistenceError(result.error or "queue write failed")

        log.info("Added submission to offline queue", extra={"queue_id": item.id})
        return item.id

    def remove(self, item_id: str) -> bool:
        items = self.get_queue()
        kept = [it for it in items if it.id != item_id]
        if len(kept) == len(items):
            return False
        self._save(kept)
        log.info("Removed submission from queue", extra={"queue_id": item_id})
        return True

    def update(self, item_id: str, **changes: Any) -> bool:
        items = self.get_queue()
        for it in items:
            if it.id == item_id:
                for k, v in changes.items():
                    if k in ("id", "data", "queued_at"):
                        raise ValueError(f"{k} is immutable once queued")
                    setattr(it, k, v)
                self._save(items)
                return True
        return False

    def clear_completed_submissions(self) -> int:
        items = self.get_queue()
        kept = [it for it in items if it.status != COMPLETED]
        cleared = len(items) - len(kept)
        self._save(kept)
        if cleared:
            log.info("Cleared %s completed submissions from queue", cleared)
        return cleared

    def clear(self) -> None:
        self.store.remove(QUEUE_KEY)
        log.info("Cleared offline queue")

    def retry_failed_submissions(self) -> int:
        items = self.get_queue()
        n = 0
        for it in items:
            if it.status == FAILED:
                it.status = PENDING
                it.error = None
                n += 1
        self._save(items)
        log.info("Reset %s failed submissions to pending", n)
        return n

    # -----------------------------
    # Queries
    # -----------------------------
    def get_pending_submissions(self) -> list[QueuedSubmission]:
        return [it for it in self.get_queue() if it.status in (PENDING, FAILED)]

    def has_pending_submissions(self) -> bool:
        return bool(self.get_pending_submissions())

    def get_oldest_pending_submission(self) -> Optional[QueuedSubmission]:
        pending = self.get_pending_submissions()
        if not pending:
            return None
        # min() keeps the first of equal keys, so ties fall back to list order
        return min(pending, key=lambda it: it.queued_at)

    def get_queue_stats(self) -> QueueStats:
        items = self.get_queue()
        return QueueStats(
            total=len(items),
            pending=sum(1 for it in items if it.status == PENDING),
            syncing=sum(1 for it in items if it.status == SYNCING),
            failed=sum(1 for it in items if it.status == FAILED),
            completed=sum(1 for it in items if it.status == COMPLETED),
        )

    def pause(self, seconds: float) -> None:
        """Hold off automated passes, e.g. after a 429 on the direct submit path."""
        self._paused_until = max(self._paused_until, self._clock() + float(seconds))

    def paused_for(self) -> float:
        """Seconds left before the server's Retry-After allows another pass."""
        return max(0.0, self._paused_until - self._clock())

    # -----------------------------
    # Sync
    # -----------------------------
    def _recover_interrupted(self) -> None:
        items = self.get_queue()
        stale = [it for it in items if it.status == SYNCING]
        if not stale:
            return
        for it in stale:
            it.status = PENDING
        self._save(items)
        log.warning("Recovered %s submissions left syncing by an interrupted pass", len(stale))

    async def sync(self, on_progress: ProgressFn | None = None) -> SyncResult:
        if self.submit is None:
            raise RuntimeError("OfflineQueue.sync needs a submit function")

        if self.paused_for() > 0:
            n = len(self.get_pending_submissions())
            log.info("Sync deferred by rate limit: %.1fs left", self.paused_for())
            return SyncResult(successful=0, failed=0, total=n, deferred=n)

        self._recover_interrupted()
        pending = sorted(self.get_pending_submissions(), key=lambda it: it.queued_at)
        total = len(pending)
        if total == 0:
            log.info("No pending submissions to sync")
            return SyncResult(successful=0, failed=0, total=0)

        log.info("Starting sync of %s pending submissions", total)
        successful = failed = deferred = 0

        for i, item in enumerate(pending):
            if i > 0 and self.item_delay > 0:
                await self._sleep(self.item_delay)

            self.update(item.id, status=SYNCING, last_attempt=_utcnow_iso())
            if on_progress is not None:
                on_progress(i + 1, total, item)

            try:
                await self.submit(item.data, idempotency_key=item.id)
            except RateLimitedError as e:
                # Not the item's fault: no retry charged, stop the pass
                self.update(item.id, status=PENDING, error=str(e))
                self.pause(e.retry_after)
                deferred = total - i
                log.warning("Sync paused by rate limit for %ss", e.retry_after, extra={"queue_id": item.id})
                break
            except Exception as e:
                retries = item.retries + 1
                self.update(
                    item.id,
                    status=FAILED if retries >= self.max_retries else PENDING,
                    retries=retries,
                    error=str(e) or e.__class__.__name__,
                )
                failed += 1
                log.warning("Failed to sync submission: %s", e, extra={"queue_id": item.id})
                continue

            self.update(item.id, status=COMPLETED, error=None)
            successful += 1
            log.info("Synced submission", extra={"queue_id": item.id})

        self.clear_completed_submissions()

        log.info("Sync completed: %s successful, %s failed out of %s", successful, failed, total)
        return SyncResult(successful=successful, failed=failed, total=total, deferred=deferred)
