# backend/pmform/services/rate_limit.py
from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from ..config import settings

log = logging.getLogger("pmform.ratelimit")

# -----------------------------------------------------------------------------
# Fixed-window rate limiting
# -----------------------------------------------------------------------------
# One record per client identifier per window: {count, reset_time}. The window
# starts on the first request and resets wholesale once reset_time has passed.
#
# Records live in process memory. They are lost on restart and are not shared
# between instances; swapping in a shared store means implementing
# RateLimitStore against it.
# -----------------------------------------------------------------------------


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitRecord:
    count: int
    reset_time: int  # epoch ms


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_in: int  # seconds
    reset_at: int  # epoch ms


class RateLimitStore:
    """
    Counter storage behind the limiter.

    increment() must be atomic per key: two concurrent callers can never both
    observe the same count.
    """

    def increment(self, key: str, *, window_ms: int, now_ms: int) -> RateLimitRecord:
        raise NotImplementedError

    def peek(self, key: str, *, now_ms: int) -> Optional[RateLimitRecord]:
        raise NotImplementedError

    def reset(self, key: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def sweep_expired(self, *, now_ms: int) -> int:
        raise NotImplementedError


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, RateLimitRecord] = {}

    def increment(self, key: str, *, window_ms: int, now_ms: int) -> RateLimitRecord:
        with self._lock:
            rec = self._records.get(key)
            if rec is None or rec.reset_time < now_ms:
                rec = RateLimitRecord(count=1, reset_time=now_ms + int(window_ms))
                self._records[key] = rec
            else:
                rec.count += 1
            # copy out so callers never see later mutations
            return RateLimitRecord(count=rec.count, reset_time=rec.reset_time)

    def peek(self, key: str, *, now_ms: int) -> Optional[RateLimitRecord]:
        with self._lock:
            rec = self._records.get(key)
            if rec is None or rec.reset_time < now_ms:
                return None
            return RateLimitRecord(count=rec.count, reset_time=rec.reset_time)

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def sweep_expired(self, *, now_ms: int) -> int:
        with self._lock:
            expired = [k for k, rec in self._records.items() if rec.reset_time < now_ms]
            for k in expired:
                del self._records[k]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore | None = None,
        *,
        max_requests: int = 10,
        window_ms: int = 60_000,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.max_requests = int(max_requests)
        self.window_ms = int(window_ms)
        self._clock = clock

    def check(
        self,
        identifier: str,
        *,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> RateLimitResult:
        """Count one request for identifier and say whether it may proceed."""
        limit = int(max_requests if max_requests is not None else self.max_requests)
        window = int(window_ms if window_ms is not None else self.window_ms)

        now = self._clock()
        rec = self.store.increment(identifier, window_ms=window, now_ms=now)

        if rec.count == 1:
            return RateLimitResult(
                allowed=True,
                remaining=limit - 1,
                limit=limit,
                reset_in=math.ceil(window / 1000),
                reset_at=rec.reset_time,
            )

        return RateLimitResult(
            allowed=rec.count <= limit,
            remaining=max(0, limit - rec.count),
            limit=limit,
            reset_in=math.ceil((rec.reset_time - now) / 1000),
            reset_at=rec.reset_time,
        )

    def status(self, identifier: str, *, max_requests: int | None = None) -> Optional[RateLimitResult]:
        """Read-only peek. None when no live window exists for identifier."""
        limit = int(max_requests if max_requests is not None else self.max_requests)
        now = self._clock()
        rec = self.store.peek(identifier, now_ms=now)
        if rec is None:
            return None

        return RateLimitResult(
            allowed=rec.count < limit,
            remaining=max(0, limit - rec.count),
            limit=limit,
            reset_in=math.ceil((rec.reset_time - now) / 1000),
            reset_at=rec.reset_time,
        )

    def peek(self, identifier: str) -> RateLimitResult:
        """Like status(), but a client with no live window reads as a fresh one."""
        res = self.status(identifier)
        if res is not None:
            return res
        return RateLimitResult(
            allowed=True,
            remaining=self.max_requests,
            limit=self.max_requests,
            reset_in=math.ceil(self.window_ms / 1000),
            reset_at=self._clock() + self.window_ms,
        )

    def reset(self, identifier: str) -> None:
        self.store.reset(identifier)

    def clear(self) -> None:
        self.store.clear()

    def sweep(self) -> int:
        removed = self.store.sweep_expired(now_ms=self._clock())
        if removed:
            log.info("rate_limit_sweep removed=%s", removed)
        return removed


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.reset_in)
    return headers


def get_client_ip(headers: Mapping[str, str]) -> str:
    """
    Client identity from proxy/CDN headers, nearest trusted edge first.

    Order: cf-connecting-ip, x-forwarded-for (first entry), x-real-ip,
    x-vercel-forwarded-for (first entry), else "unknown".
    """
    lowered = {str(k).lower(): v for k, v in headers.items()}

    cf = lowered.get("cf-connecting-ip")
    if cf:
        return cf.strip()

    xff = lowered.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()

    real = lowered.get("x-real-ip")
    if real:
        return real.strip()

    vercel = lowered.get("x-vercel-forwarded-for")
    if vercel:
        return vercel.split(",")[0].strip()

    return "unknown"


def build_rate_limiter() -> RateLimiter:
    return RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_ms=settings.rate_limit_window_ms,
    )


# -----------------------------
# Background sweep
# -----------------------------
_sweeper_task: asyncio.Task | None = None


async def _sweep_loop(limiter: RateLimiter, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            limiter.sweep()
        except Exception:
            log.exception("Rate limit sweep failed")


def start_rate_limit_sweeper(limiter: RateLimiter, interval_seconds: float | None = None) -> None:
    global _sweeper_task
    if _sweeper_task and not _sweeper_task.done():
        return
    interval = float(interval_seconds or settings.rate_limit_sweep_interval_seconds)
    loop = asyncio.get_running_loop()
    _sweeper_task = loop.create_task(_sweep_loop(limiter, interval))
    log.info("Rate limit sweeper started")


async def stop_rate_limit_sweeper() -> None:
    global _sweeper_task
    if _sweeper_task is None:
        return
    _sweeper_task.cancel()
    try:
        await _sweeper_task
    except asyncio.CancelledError:
        pass
    _sweeper_task = None
    log.info("Rate limit sweeper stopped")
