"""
Throughput counter and periodic rate reporting.
"""

import logging
from dataclasses import dataclass

from .cancel import CancelToken
from .clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class RateSample:
    """Delivered messages over one reporting window"""
    payload_size: int
    window_s: float
    count: int
    messages_per_second: float
    mean_latency_us: float | None = None


class ThroughputCounter:
    """
    Delivered-message count with an optional round-trip time accumulator.

    ``increment`` and ``swap`` never await, so a swap always reads a count and
    an RTT sum that belong to the same set of messages.
    """

    def __init__(self):
        self.count = 0
        self.rtt_sum_us = 0
        self.total = 0

    def increment(self, rtt_us: int | None = None) -> None:
        self.count += 1
        self.total += 1
        if rtt_us is not None:
            self.rtt_sum_us += rtt_us

    def swap(self) -> tuple[int, int]:
        """Return (count, rtt_sum_us) and reset both to zero"""
        count, rtt_sum_us = self.count, self.rtt_sum_us
        self.count = 0
        self.rtt_sum_us = 0
        return count, rtt_sum_us


class RateReporter:
    """
    Turns a ThroughputCounter into one RateSample per tick.

    Args:
        counter: the counter to sample and reset
        payload_size: reported alongside every sample
        clock: source of tick timestamps
        with_latency: include the mean RTT of the window in each sample
    """

    def __init__(
        self,
        counter: ThroughputCounter,
        payload_size: int,
        clock: Clock,
        with_latency: bool = False,
    ):
        self.counter = counter
        self.payload_size = payload_size
        self.clock = clock
        self.with_latency = with_latency
        self._last_tick_us: int | None = None

    def start(self) -> None:
        self._last_tick_us = self.clock.now_us()

    def tick(self) -> RateSample | None:
        """Close the current window. Returns None when nothing was delivered."""
        now_us = self.clock.now_us()
        if self._last_tick_us is None:
            self._last_tick_us = now_us
        elapsed_us = now_us - self._last_tick_us
        if elapsed_us <= 0:
            return None
        self._last_tick_us = now_us

        count, rtt_sum_us = self.counter.swap()
        if count == 0:
            return None

        window_s = elapsed_us / 1_000_000
        return RateSample(
            payload_size=self.payload_size,
            window_s=window_s,
            count=count,
            messages_per_second=count / window_s,
            mean_latency_us=rtt_sum_us / count if self.with_latency else None,
        )

    async def run(self, token: CancelToken, interval: float, emit) -> None:
        """Tick every ``interval`` seconds and pass samples to ``emit``"""
        self.start()
        while True:
            await token.sleep(interval)
            sample = self.tick()
            if sample is not None:
                emit(sample)
