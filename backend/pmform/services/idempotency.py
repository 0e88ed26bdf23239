from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional


class RecentSubmissions:
    """
    Idempotency-Key -> submission id, for replaying a success instead of
    appending the same queued item twice.

    Process memory only: a restart forgets every key.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()

    def _prune(self, now: float) -> None:
        expired = [k for k, (_sid, exp) in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            now = self._clock()
            hit = self._entries.get(key)
            if hit is None:
                return None
            sid, exp = hit
            if exp <= now:
                del self._entries[key]
                return None
            return sid

    def remember(self, key: str, submission_id: str) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = (submission_id, now + self.ttl_seconds)
            self._entries.move_to_end(key)
            self._prune(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
