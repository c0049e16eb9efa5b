"""
Common shape of every benchmark role.

A benchmark owns up to three loops. The driver starts each of them as its
own task; a loop that has nothing to do returns at once.
"""

import asyncio
import logging

from .cancel import CancelToken
from .clock import Clock
from .codec import U32_MASK, PayloadCodec, ProbeInfo
from .config import BenchConfig
from .errors import DecodeError
from .report import ReportWriter
from .transport import Client, Message

logger = logging.getLogger(__name__)


class Benchmark:
    """
    Base class for the benchmark roles.

    Subclasses declare ``subscriptions`` and override any of
    ``send_loop``, ``receive_loop`` and ``report_loop``.
    """

    kind = "benchmark"

    def __init__(self, client: Client, config: BenchConfig, clock: Clock, report: ReportWriter):
        self.client = client
        self.config = config
        self.clock = clock
        self.report = report

    @property
    def subscriptions(self) -> list[str]:
        return []

    async def send_loop(self, token: CancelToken) -> None:
        return None

    async def receive_loop(self, token: CancelToken) -> None:
        return None

    async def report_loop(self, token: CancelToken) -> None:
        return None

    async def receive(self, token: CancelToken, topic: str, timeout: float | None = None) -> Message:
        """Next message on ``topic``, skipping anything else the client delivers"""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                raise TimeoutError()
            message = await token.run(self.client.next_message(), timeout=remaining)
            if message.topic == topic:
                return message
            logger.debug("Skipping message on unexpected topic %s", message.topic)

    async def await_reply(
        self,
        token: CancelToken,
        codec: PayloadCodec,
        topic: str,
        seq_index: int,
        expected_size: int,
        timeout: float,
    ) -> ProbeInfo | None:
        """
        Wait for the reply to probe ``seq_index`` sent by this process.

        Replies from other senders and stale indices are dropped, malformed
        payloads are logged and dropped; none of them end the wait.

        Returns:
            the decoded reply, or None once ``timeout`` has elapsed
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                message = await self.receive(token, topic, timeout=deadline - loop.time())
            except TimeoutError:
                return None

            try:
                info = codec.decode(message.payload, expected_size)
            except DecodeError as e:
                logger.error("Unable to parse payload: %s", e)
                continue

            if info.sender_id != self.config.sender_id:
                logger.debug("Ignoring reply from foreign sender %d", info.sender_id)
                continue
            if info.seq_index != seq_index & U32_MASK:
                logger.debug("Ignoring stale reply %d while waiting for %d", info.seq_index, seq_index)
                continue
            return info

    def summary(self) -> dict:
        return self.report.summary()
