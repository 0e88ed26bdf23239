from __future__ import annotations

import threading
from typing import Mapping

METRIC_PREFIX = "pmform_"


class _Metrics:
    """
    Process-local counters for the submission API.

    Counters only ever go up (reset() is for tests). Point-in-time values such
    as rate-limiter size are gauges passed to render() by the caller.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}

    def inc(self, name: str, n: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + int(n)

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(sorted(self._counters.items()))

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()

    def render(self, gauges: Mapping[str, float] | None = None) -> str:
        """Prometheus text exposition of every counter plus the given gauges."""
        lines: list[str] = []
        for name, value in self.snapshot().items():
            lines.append(f"# TYPE {METRIC_PREFIX}{name} counter")
            lines.append(f"{METRIC_PREFIX}{name} {value}")
        for name, value in sorted((gauges or {}).items()):
            lines.append(f"# TYPE {METRIC_PREFIX}{name} gauge")
            lines.append(f"{METRIC_PREFIX}{name} {value}")
        return "\n".join(lines) + "\n"


METRICS = _Metrics()
