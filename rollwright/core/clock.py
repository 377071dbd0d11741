"""Time source for the rollout controller.

All waiting goes through a ``Clock`` so a cancelled rollout wakes up
immediately and tests can run the poll loop on simulated time.
"""

from __future__ import annotations

import threading
import time


class Clock:
    """Monotonic wall clock."""

    def now(self) -> float:
        return time.monotonic()

    def wait(self, event: threading.Event, seconds: float) -> bool:
        """Block for up to *seconds*.  Returns True if *event* was set."""
        if seconds <= 0:
            return event.is_set()
        return event.wait(seconds)

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        """Sleep for *seconds*, waking early if *cancel* is set.  Returns True if cancelled."""
        if cancel is not None:
            return self.wait(cancel, seconds)
        if seconds > 0:
            time.sleep(seconds)
        return False


class FakeClock(Clock):
    """Simulated clock: waiting advances time instantly.

    ``waits`` and ``sleeps`` record every requested duration so tests can
    assert on poll spacing and retry backoff.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._lock = threading.Lock()
        self.waits: list[float] = []
        self.sleeps: list[float] = []

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds

    def wait(self, event: threading.Event, seconds: float) -> bool:
        if event.is_set():
            return True
        self.waits.append(seconds)
        self.advance(max(seconds, 0.0))
        return event.is_set()

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        self.sleeps.append(seconds)
        self.advance(max(seconds, 0.0))
        return cancel is not None and cancel.is_set()
