"""
Pending probe table for pipelined latency probing.
"""

import logging

logger = logging.getLogger(__name__)


class PendingProbeTable:
    """
    Maps a probe's sequence index to its send time (epoch microseconds).

    None of the methods await, so each call is atomic with respect to the
    other tasks of the event loop. Entries are kept in insertion order, which
    is also send order, so expiry only ever looks at the front of the table.

    Args:
        max_size: evict the oldest entry when an insert would exceed this bound
    """

    def __init__(self, max_size: int | None = None):
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, seq_index: int) -> bool:
        return seq_index in self._entries

    def insert(self, seq_index: int, send_time_us: int) -> list[tuple[int, int]]:
        """
        Record a sent probe.

        Returns:
            entries evicted to honour ``max_size``, as (seq_index, send_time_us)
        """
        evicted = []
        if seq_index in self._entries:
            # A wrapped sequence index replaces its stale predecessor
            evicted.append((seq_index, self._entries.pop(seq_index)))
        if self.max_size is not None:
            while len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                evicted.append((oldest, self._entries.pop(oldest)))
        self._entries[seq_index] = send_time_us
        return evicted

    def pop(self, seq_index: int) -> int | None:
        """Remove and return the send time, or None for an unknown index"""
        return self._entries.pop(seq_index, None)

    def expire(self, now_us: int, max_age_us: int) -> list[tuple[int, int]]:
        """Remove every entry sent more than ``max_age_us`` before ``now_us``"""
        expired = []
        while self._entries:
            seq_index, send_time_us = next(iter(self._entries.items()))
            if now_us - send_time_us <= max_age_us:
                break
            del self._entries[seq_index]
            expired.append((seq_index, send_time_us))
        return expired
