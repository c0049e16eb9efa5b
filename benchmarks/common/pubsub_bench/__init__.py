"""
Pub/Sub Benchmarks Library

Measures round-trip latency and sustained throughput of publish/subscribe
transports using self-describing probe payloads.
"""

__version__ = "0.1.0"

from .clock import Clock, ManualClock
from .codec import COUNTING_HEADER_SIZE, TIMED_HEADER_SIZE, PayloadCodec, ProbeInfo
from .config import BenchConfig, BenchmarkMode
from .counter import RateReporter, RateSample, ThroughputCounter
from .driver import BenchmarkDriver, DriverState
from .pending import PendingProbeTable
from .report import LatencySample, ReportWriter
from .runner import BenchmarkRunner

__all__ = [
    "BenchConfig",
    "BenchmarkDriver",
    "BenchmarkMode",
    "BenchmarkRunner",
    "Clock",
    "COUNTING_HEADER_SIZE",
    "DriverState",
    "LatencySample",
    "ManualClock",
    "PayloadCodec",
    "PendingProbeTable",
    "ProbeInfo",
    "RateReporter",
    "RateSample",
    "ReportWriter",
    "ThroughputCounter",
    "TIMED_HEADER_SIZE",
]
