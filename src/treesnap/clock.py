from __future__ import annotations

import time
from collections.abc import Callable

# Nanoseconds since the epoch, comparable with ``st_mtime_ns``.
Revision = int


class RevisionClock:
    """Hands out fencing timestamps for capture passes.

    Every tick is strictly later than the previous one, even when the
    underlying clock has not advanced between two calls.
    """

    def __init__(self, now: Callable[[], int] = time.time_ns) -> None:
        self._now = now
        self._last: Revision | None = None
        self.ticks = 0

    def tick(self) -> Revision:
        value = self._now()
        if self._last is not None and value <= self._last:
            value = self._last + 1
        self._last = value
        self.ticks += 1
        return value
