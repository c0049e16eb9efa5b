"""
Benchmark configuration.
"""

import os
import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from .codec import COUNTING_HEADER_SIZE, TIMED_HEADER_SIZE
from .errors import ConfigurationError
from .transport import QoS, parse_endpoint
from .transport.mqtt import MAX_REMAINING_LENGTH, PACKET_HEADER_SIZE

DEFAULT_BROKER = "127.0.0.1:1883"
DEFAULT_THROUGHPUT_TOPIC = "THROUGHPUT"
DEFAULT_PING_TOPIC = "PING"
DEFAULT_PONG_TOPIC = "PONG"
DEFAULT_PROBE_TIMEOUT = 1.0
DEFAULT_REPORT_INTERVAL = 1.0
DEFAULT_MAX_PAYLOAD = MAX_REMAINING_LENGTH - PACKET_HEADER_SIZE


class BenchmarkMode(StrEnum):
    """The closed set of benchmark roles, chosen once per process"""
    PING = "ping"
    PING_PARALLEL = "ping-parallel"
    PONG = "pong"
    PUB_THR = "pub-thr"
    SUB_THR = "sub-thr"
    REQ_THR = "req-thr"

    @property
    def probes(self) -> bool:
        """Waits for replies under a per-probe timeout"""
        return self in (BenchmarkMode.PING, BenchmarkMode.PING_PARALLEL, BenchmarkMode.REQ_THR)

    @property
    def header_size(self) -> int:
        if self in (BenchmarkMode.PING, BenchmarkMode.PING_PARALLEL):
            return TIMED_HEADER_SIZE
        if self == BenchmarkMode.PONG:
            return 0
        return COUNTING_HEADER_SIZE


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|us|h|m|s)?")
_DURATION_UNITS = {"us": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(text: str) -> float:
    """
    Parse durations such as ``30``, ``1.5s``, ``250ms`` or ``1m30s`` into seconds.
    """
    text = text.strip().lower()
    pos = 0
    total = 0.0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None or match.end() == pos:
            raise ConfigurationError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
        while pos < len(text) and text[pos] == " ":
            pos += 1
    if not text:
        raise ConfigurationError("empty duration")
    return total


@dataclass
class BenchConfig:
    """Settings for one benchmark process"""
    mode: BenchmarkMode
    broker: str = DEFAULT_BROKER
    ping_topic: str = DEFAULT_PING_TOPIC
    pong_topic: str = DEFAULT_PONG_TOPIC
    topic: str = DEFAULT_THROUGHPUT_TOPIC
    payload_size: int = TIMED_HEADER_SIZE
    reply_size: int | None = None
    interval: float = 0.0
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    timeout: float | None = None
    count: int | None = None
    qos: QoS = QoS.AT_MOST_ONCE
    sender_id: int = field(default_factory=lambda: os.getpid() & 0xFFFFFFFF)
    max_payload: int = DEFAULT_MAX_PAYLOAD
    max_pending: int | None = None
    report_interval: float = DEFAULT_REPORT_INTERVAL
    report_rate: bool = False
    scenario: str | None = None
    name: str | None = None
    results_dir: Path | None = None

    @property
    def client_id(self) -> str:
        return f"pubsub-bench-{self.mode}-{self.sender_id}"

    @property
    def transport(self) -> str:
        return parse_endpoint(self.broker)[0]

    @property
    def labels(self) -> tuple[str, str, str] | None:
        """(transport, scenario, name) when the output should be labelled"""
        if self.scenario and self.name:
            return (self.transport, self.scenario, self.name)
        return None

    @property
    def expected_reply_size(self) -> int:
        return self.reply_size if self.reply_size is not None else self.payload_size

    def validate(self) -> "BenchConfig":
        """
        Reject settings that cannot produce a valid run.

        Raises:
            ConfigurationError: describing the first offending setting
        """
        header_size = self.mode.header_size
        if self.mode != BenchmarkMode.PONG and self.payload_size < header_size:
            raise ConfigurationError(
                f"payload size {self.payload_size} is below the minimum of "
                f"{header_size} bytes for {self.mode}"
            )
        if self.reply_size is not None and self.reply_size < COUNTING_HEADER_SIZE:
            raise ConfigurationError(
                f"reply size {self.reply_size} is below the minimum of {COUNTING_HEADER_SIZE} bytes"
            )
        if max(self.payload_size, self.expected_reply_size) > self.max_payload:
            raise ConfigurationError(
                f"payload size exceeds the transport maximum of {self.max_payload} bytes"
            )
        if self.interval < 0:
            raise ConfigurationError("interval must not be negative")
        if self.mode in (BenchmarkMode.PING, BenchmarkMode.PING_PARALLEL) and self.interval <= 0:
            raise ConfigurationError("latency probing needs a positive interval")
        if self.probe_timeout <= 0:
            raise ConfigurationError("probe timeout must be positive")
        if self.timeout is not None:
            if self.timeout <= 0:
                raise ConfigurationError("timeout must be positive")
            if self.mode.probes and self.probe_timeout >= self.timeout:
                raise ConfigurationError(
                    f"probe timeout {self.probe_timeout}s must be shorter than the run timeout {self.timeout}s"
                )
        if self.report_interval <= 0:
            raise ConfigurationError("report interval must be positive")
        if self.count is not None and self.count < 1:
            raise ConfigurationError("count must be at least 1")
        if self.max_pending is not None and self.max_pending < 1:
            raise ConfigurationError("max pending must be at least 1")
        if not 0 <= self.sender_id <= 0xFFFFFFFF:
            raise ConfigurationError("sender id must fit in 32 bits")
        parse_endpoint(self.broker)
        return self
