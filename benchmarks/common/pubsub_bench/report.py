"""
CSV records on stdout and in-memory aggregation for the run summary.
"""

import logging
import math
import sys
from dataclasses import dataclass
from typing import TextIO

from .counter import RateSample
from .metrics import LatencyStats, RateStats

logger = logging.getLogger(__name__)


@dataclass
class LatencySample:
    """Outcome of one probe, ``rtt_us`` is None when the probe was lost"""
    seq_index: int
    interval: float
    rtt_us: int | None
    payload_size: int = 0

    @property
    def lost(self) -> bool:
        return self.rtt_us is None

    @property
    def half_rtt_us(self) -> int | None:
        return None if self.rtt_us is None else self.rtt_us // 2


class ReportWriter:
    """
    Writes one comma-separated record per sample.

    Args:
        stream: destination, stdout by default
        labels: (transport, scenario, name); when given every record is
            prefixed ``transport,scenario,kind,name,`` and latency records
            carry ``payload_size,interval,seq_index,rtt_us``
    """

    def __init__(self, stream: TextIO | None = None, labels: tuple[str, str, str] | None = None):
        self.stream = stream
        self.labels = labels

        self.half_rtts_us: list[int] = []
        self.lost = 0
        self.rates: list[float] = []
        self.mean_latencies_us: list[float] = []

    def _write(self, kind: str, *fields) -> None:
        if self.labels is not None:
            transport, scenario, name = self.labels
            fields = (transport, scenario, kind, name, *fields)
        stream = self.stream or sys.stdout
        stream.write(",".join(str(f) for f in fields) + "\n")
        stream.flush()

    def latency(self, sample: LatencySample, kind: str = "latency.sequential") -> None:
        if sample.lost:
            self.lost += 1
            logger.warning("Probe %d lost", sample.seq_index)
            return
        self.half_rtts_us.append(sample.half_rtt_us)
        interval = f"{sample.interval:g}"
        if self.labels is None:
            self._write(kind, interval, sample.half_rtt_us)
        else:
            self._write(kind, sample.payload_size, interval, sample.seq_index, sample.rtt_us)

    def rate(self, sample: RateSample, kind: str = "throughput") -> None:
        self.rates.append(sample.messages_per_second)
        rate = math.floor(sample.messages_per_second)
        if sample.mean_latency_us is None:
            self._write(kind, sample.payload_size, rate)
            return
        self.mean_latencies_us.append(sample.mean_latency_us)
        self._write(kind, sample.payload_size, rate, math.floor(sample.mean_latency_us))

    def summary(self) -> dict:
        """Aggregate everything written so far"""
        result = {}
        if self.half_rtts_us or self.lost:
            result["probes_answered"] = len(self.half_rtts_us)
            result["probes_lost"] = self.lost
            result.update(LatencyStats.from_measurements(self.half_rtts_us).to_dict())
        if self.rates:
            result.update(RateStats.from_samples(self.rates, self.mean_latencies_us).to_dict())
        return result
