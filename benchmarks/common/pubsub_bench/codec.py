"""
Probe payload codec.

Payloads carry a fixed little-endian header followed by zero padding:

    offset  0..4   sender_id     u32
    offset  4..8   seq_index     u32
    offset  8..16  send_time_us  u64  (timed variant only)

The counting variant (8 byte header) is used for throughput runs, the timed
variant (16 byte header) for latency probes.
"""

import struct
from dataclasses import dataclass

from .clock import Clock
from .errors import ClockSkew, ConfigurationError, SizeMismatch, TooShort

_IDENTITY = struct.Struct("<II")
_TIMED = struct.Struct("<IIQ")

COUNTING_HEADER_SIZE = _IDENTITY.size
TIMED_HEADER_SIZE = _TIMED.size

U32_MASK = 0xFFFFFFFF


@dataclass
class ProbeInfo:
    """Fields recovered from a decoded payload"""
    sender_id: int
    seq_index: int
    send_time_us: int | None = None
    elapsed_us: int | None = None

    @property
    def correlation_id(self) -> tuple[int, int]:
        return (self.sender_id, self.seq_index)


class PayloadCodec:
    """
    Encoder/decoder for one payload variant.

    Args:
        timed: embed and check send timestamps (latency probes)
        clock: clock used for timestamps, required when ``timed`` is set
    """

    def __init__(self, timed: bool = True, clock: Clock | None = None):
        if timed and clock is None:
            raise ValueError("a timed codec needs a clock")
        self.timed = timed
        self.clock = clock
        self.header_size = TIMED_HEADER_SIZE if timed else COUNTING_HEADER_SIZE

    def check_size(self, total_size: int) -> None:
        if total_size < self.header_size:
            raise ConfigurationError(
                f"payload size {total_size} is below the minimum of {self.header_size} bytes"
            )

    def encode(self, sender_id: int, seq_index: int, total_size: int) -> bytes:
        """Build a zero-padded payload of exactly ``total_size`` bytes"""
        self.check_size(total_size)
        buf = bytearray(total_size)
        if self.timed:
            _TIMED.pack_into(
                buf, 0, sender_id & U32_MASK, seq_index & U32_MASK, self.clock.now_us()
            )
        else:
            _IDENTITY.pack_into(buf, 0, sender_id & U32_MASK, seq_index & U32_MASK)
        return bytes(buf)

    def decode(self, buf: bytes, expected_size: int) -> ProbeInfo:
        """
        Parse a payload.

        Raises:
            TooShort: the buffer cannot hold the header
            SizeMismatch: the buffer is not ``expected_size`` bytes long
            ClockSkew: the embedded timestamp lies in the future
        """
        size = len(buf)
        if size < self.header_size:
            raise TooShort(size, self.header_size)
        if size != expected_size:
            raise SizeMismatch(size, expected_size)

        if not self.timed:
            sender_id, seq_index = _IDENTITY.unpack_from(buf, 0)
            return ProbeInfo(sender_id=sender_id, seq_index=seq_index)

        sender_id, seq_index, send_time_us = _TIMED.unpack_from(buf, 0)
        now_us = self.clock.now_us()
        if send_time_us > now_us:
            raise ClockSkew(send_time_us, now_us)
        return ProbeInfo(
            sender_id=sender_id,
            seq_index=seq_index,
            send_time_us=send_time_us,
            elapsed_us=now_us - send_time_us,
        )


def reply_payload(request: bytes, reply_size: int) -> bytes:
    """Keep the identity header of ``request`` and pad it to ``reply_size``"""
    if reply_size < COUNTING_HEADER_SIZE:
        raise ConfigurationError(
            f"reply size {reply_size} is below the minimum of {COUNTING_HEADER_SIZE} bytes"
        )
    if len(request) < COUNTING_HEADER_SIZE:
        raise TooShort(len(request), COUNTING_HEADER_SIZE)
    header = request[:COUNTING_HEADER_SIZE]
    return header + bytes(reply_size - COUNTING_HEADER_SIZE)
