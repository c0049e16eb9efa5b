"""
Epoch-relative microsecond clocks.

Every timestamp embedded in a probe is an offset from the epoch of the clock
that produced it. The epoch is fixed on first use and never moves, so offsets
are only comparable within one process.
"""

import time


class Clock:
    """Monotonic clock whose epoch is set on the first reading"""

    def __init__(self):
        self._epoch_ns: int | None = None

    @property
    def started(self) -> bool:
        return self._epoch_ns is not None

    def start(self) -> None:
        """Fix the epoch now. Later calls keep the first epoch."""
        if self._epoch_ns is None:
            self._epoch_ns = time.perf_counter_ns()

    def now_us(self) -> int:
        """Microseconds elapsed since the epoch"""
        self.start()
        return (time.perf_counter_ns() - self._epoch_ns) // 1000


class ManualClock(Clock):
    """Clock that only moves when told to, for deterministic tests"""

    def __init__(self, now_us: int = 0):
        super().__init__()
        self._now_us = now_us

    def start(self) -> None:
        pass

    @property
    def started(self) -> bool:
        return True

    def now_us(self) -> int:
        return self._now_us

    def advance(self, seconds: float = 0.0, *, micros: int = 0) -> None:
        self._now_us += int(seconds * 1_000_000) + micros

    def set(self, now_us: int) -> None:
        self._now_us = now_us
