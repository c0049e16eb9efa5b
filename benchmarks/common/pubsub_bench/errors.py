"""
Exception hierarchy for the benchmark harness.

Configuration and transport errors are fatal and reach the command line.
Decode errors, correlation mismatches and probe timeouts are absorbed by the
component that hits them.
"""


class BenchError(Exception):
    """Base class for all harness errors"""
    pass


class ConfigurationError(BenchError):
    """Raised for invalid benchmark settings, always at startup"""
    pass


class TransportError(BenchError):
    """Raised when connect, publish, subscribe or receive fails"""
    pass


class DecodeError(BenchError):
    """Raised when a received payload cannot be parsed"""
    pass


class TooShort(DecodeError):
    def __init__(self, size: int, header_size: int):
        super().__init__(
            f"payload of {size} bytes is shorter than the {header_size} byte header"
        )
        self.size = size
        self.header_size = header_size


class SizeMismatch(DecodeError):
    def __init__(self, size: int, expected_size: int):
        super().__init__(
            f"expected a payload of {expected_size} bytes, received {size} bytes"
        )
        self.size = size
        self.expected_size = expected_size


class ClockSkew(DecodeError):
    def __init__(self, send_time_us: int, now_us: int):
        super().__init__(
            f"embedded timestamp {send_time_us}us is ahead of the clock ({now_us}us)"
        )
        self.send_time_us = send_time_us
        self.now_us = now_us


class RunCancelled(BenchError):
    """Raised at a suspension point once the run has been cancelled"""
    pass
