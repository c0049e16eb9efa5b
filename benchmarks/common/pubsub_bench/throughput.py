"""
Throughput benchmarks: publisher, subscriber and request/response requester.
"""

import logging

from .benchmark import Benchmark
from .cancel import CancelToken
from .codec import PayloadCodec
from .counter import RateReporter, ThroughputCounter
from .errors import DecodeError

logger = logging.getLogger(__name__)


class _Counting(Benchmark):
    """Shared counter and report loop"""

    with_latency = False

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.codec = PayloadCodec(timed=False)
        self.counter = ThroughputCounter()
        self.reporter = RateReporter(
            self.counter, self.reported_size, self.clock, with_latency=self.with_latency
        )

    @property
    def reported_size(self) -> int:
        return self.config.payload_size

    @property
    def reporting(self) -> bool:
        return True

    def emit(self, sample) -> None:
        self.report.rate(sample, self.kind)

    async def report_loop(self, token: CancelToken) -> None:
        if self.reporting:
            await self.reporter.run(token, self.config.report_interval, self.emit)


class PublishThroughput(_Counting):
    """Publishes counting payloads back to back, or every ``interval`` seconds"""

    kind = "publish.throughput"

    @property
    def reporting(self) -> bool:
        return self.config.report_rate

    async def send_loop(self, token: CancelToken) -> None:
        cfg = self.config
        logger.info("Start producer %d on topic %s", cfg.sender_id, cfg.topic)

        seq_index = 0
        while cfg.count is None or seq_index < cfg.count:
            payload = self.codec.encode(cfg.sender_id, seq_index, cfg.payload_size)
            await token.run(self.client.publish(cfg.topic, payload, cfg.qos))
            self.counter.increment()
            seq_index += 1
            if cfg.interval > 0:
                await token.sleep(cfg.interval)

        token.cancel(f"{seq_index} messages published")

    def summary(self) -> dict:
        return {"published": self.counter.total, **super().summary()}


class SubscribeThroughput(_Counting):
    """Counts well-formed payloads arriving on the throughput topic"""

    kind = "throughput"

    @property
    def subscriptions(self) -> list[str]:
        return [self.config.topic]

    async def receive_loop(self, token: CancelToken) -> None:
        cfg = self.config
        logger.info("Start consumer %d on topic %s", cfg.sender_id, cfg.topic)
        while True:
            message = await self.receive(token, cfg.topic)
            try:
                info = self.codec.decode(message.payload, cfg.payload_size)
            except DecodeError as e:
                logger.error("Unable to parse payload: %s", e)
                continue
            logger.debug(
                "Consumer %d received message %d from producer %d",
                cfg.sender_id, info.seq_index, info.sender_id,
            )
            self.counter.increment()

    def summary(self) -> dict:
        return {"received": self.counter.total, **super().summary()}


class RequestThroughput(_Counting):
    """
    Back-to-back request/response exchanges.

    Each request is a counting payload on the ping topic; the responder
    answers on the pong topic with ``reply_size`` bytes. Completed
    exchanges feed the counter together with their round-trip time.
    """

    kind = "query.throughput"
    with_latency = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lost = 0

    @property
    def reported_size(self) -> int:
        return self.config.expected_reply_size

    @property
    def subscriptions(self) -> list[str]:
        return [self.config.pong_topic]

    async def send_loop(self, token: CancelToken) -> None:
        cfg = self.config
        logger.info("Start requester %d on %s -> %s", cfg.sender_id, cfg.ping_topic, cfg.pong_topic)

        seq_index = 0
        while cfg.count is None or seq_index < cfg.count:
            started_us = self.clock.now_us()
            payload = self.codec.encode(cfg.sender_id, seq_index, cfg.payload_size)
            await token.run(self.client.publish(cfg.ping_topic, payload, cfg.qos))

            info = await self.await_reply(
                token, self.codec, cfg.pong_topic, seq_index, cfg.expected_reply_size, cfg.probe_timeout
            )
            if info is None:
                self.lost += 1
                logger.warning("Request %d lost", seq_index)
            else:
                self.counter.increment(self.clock.now_us() - started_us)

            seq_index += 1
            if cfg.interval > 0:
                await token.sleep(cfg.interval)

        token.cancel(f"{seq_index} requests sent")

    def summary(self) -> dict:
        return {"completed": self.counter.total, "lost": self.lost, **super().summary()}
