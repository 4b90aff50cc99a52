"""Modification clock for entity timestamps."""

import threading
import time
from typing import Callable


def wall_clock_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ModificationClock:
    """Issues strictly increasing epoch-millisecond timestamps.

    Values follow the wall clock. When two calls land on the same
    millisecond (or the wall clock steps backwards), a local counter bumps
    the value past the last one issued, so no two local writes share an
    ``updated_at``.
    """

    def __init__(self, wall: Callable[[], int] = wall_clock_ms):
        self._wall = wall
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        """Return a timestamp greater than every previously issued one."""
        with self._lock:
            ts = max(self._wall(), self._last + 1)
            self._last = ts
            return ts

    def observe(self, ts: int) -> None:
        """Move the clock past a timestamp seen elsewhere (e.g. the server)."""
        with self._lock:
            if ts > self._last:
                self._last = ts

    @property
    def last(self) -> int:
        return self._last
