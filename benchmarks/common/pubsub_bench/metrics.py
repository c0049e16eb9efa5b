"""
Metric collection utilities for benchmark summaries.
"""

import time
from dataclasses import dataclass

import psutil


class Timer:
    """Context manager for measuring elapsed time"""

    def __init__(self):
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()

    def elapsed_s(self) -> float:
        """Get elapsed time in seconds"""
        if self.end_time is None:
            return time.perf_counter() - self.start_time
        return self.end_time - self.start_time


def measure_memory(pid: int | None = None) -> float:
    """
    Measure memory usage in MB.

    Args:
        pid: Process ID to measure (defaults to current process)

    Returns:
        RSS memory in MB
    """
    process = psutil.Process(pid) if pid else psutil.Process()
    return process.memory_info().rss / (1024 * 1024)


def calculate_percentile(values: list[float], p: float) -> float:
    """
    Calculate the p-th percentile of a list of values.

    Uses the nearest-rank method: for p99 with 100 values, this returns
    the 99th value when sorted.
    """
    if not values:
        return 0.0

    sorted_values = sorted(values)
    n = len(sorted_values)
    rank = int((p / 100) * n)

    if rank >= n:
        return sorted_values[-1]
    return sorted_values[rank]


@dataclass
class LatencyStats:
    """Summary of half round-trip times in microseconds"""
    samples: int
    min: float
    max: float
    mean: float
    p50: float
    p95: float
    p99: float
    p999: float | None = None

    @classmethod
    def from_measurements(cls, latencies_us: list[float]) -> "LatencyStats":
        if not latencies_us:
            return cls(0, 0, 0, 0, 0, 0, 0)

        sorted_lat = sorted(latencies_us)
        n = len(sorted_lat)

        return cls(
            samples=n,
            min=sorted_lat[0],
            max=sorted_lat[-1],
            mean=sum(sorted_lat) / n,
            p50=calculate_percentile(sorted_lat, 50),
            p95=calculate_percentile(sorted_lat, 95),
            p99=calculate_percentile(sorted_lat, 99),
            p999=calculate_percentile(sorted_lat, 99.9) if n >= 1000 else None,
        )

    def to_dict(self, prefix: str = "half_rtt") -> dict:
        fields = {
            "min_us": self.min,
            "mean_us": round(self.mean, 1),
            "p50_us": self.p50,
            "p95_us": self.p95,
            "p99_us": self.p99,
            "max_us": self.max,
        }
        if self.p999 is not None:
            fields["p999_us"] = self.p999
        return {f"{prefix}_{key}": value for key, value in fields.items()}


@dataclass
class RateStats:
    """Summary of per-window delivery rates"""
    windows: int
    mean: float
    min: float
    max: float
    mean_latency_us: float | None = None

    @classmethod
    def from_samples(cls, rates: list[float], mean_latencies_us: list[float] | None = None) -> "RateStats":
        if not rates:
            return cls(0, 0.0, 0.0, 0.0)
        latency = None
        if mean_latencies_us:
            latency = sum(mean_latencies_us) / len(mean_latencies_us)
        return cls(
            windows=len(rates),
            mean=sum(rates) / len(rates),
            min=min(rates),
            max=max(rates),
            mean_latency_us=latency,
        )

    def to_dict(self) -> dict:
        result = {
            "rate_windows": self.windows,
            "rate_mean_msg_per_s": round(self.mean, 1),
            "rate_min_msg_per_s": round(self.min, 1),
            "rate_max_msg_per_s": round(self.max, 1),
        }
        if self.mean_latency_us is not None:
            result["mean_latency_us"] = round(self.mean_latency_us, 1)
        return result
