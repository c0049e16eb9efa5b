"""
Latency probing over a ping/pong topic pair.

Both probers send timed payloads on the ping topic and expect the responder
to echo them on the pong topic. Each answered probe yields one record of
``interval,half_rtt_us``; the half round trip assumes symmetric forward and
return paths.
"""

import asyncio
import logging

from .benchmark import Benchmark
from .cancel import CancelToken
from .codec import U32_MASK, PayloadCodec
from .errors import DecodeError
from .pending import PendingProbeTable
from .report import LatencySample

logger = logging.getLogger(__name__)


class SequentialProber(Benchmark):
    """One probe in flight at a time: send, wait for the echo or the timeout, sleep"""

    kind = "latency.sequential"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.codec = PayloadCodec(timed=True, clock=self.clock)
        self.sent = 0

    @property
    def subscriptions(self) -> list[str]:
        return [self.config.pong_topic]

    async def send_loop(self, token: CancelToken) -> None:
        cfg = self.config
        logger.info("Start ping %d on %s -> %s", cfg.sender_id, cfg.ping_topic, cfg.pong_topic)

        seq_index = 0
        while cfg.count is None or seq_index < cfg.count:
            payload = self.codec.encode(cfg.sender_id, seq_index, cfg.payload_size)
            logger.debug("Send ping %d from %d", seq_index, cfg.sender_id)
            await token.run(self.client.publish(cfg.ping_topic, payload, cfg.qos))
            self.sent += 1

            info = await self.await_reply(
                token, self.codec, cfg.pong_topic, seq_index, cfg.payload_size, cfg.probe_timeout
            )
            rtt_us = None if info is None else info.elapsed_us
            sample = LatencySample(seq_index, cfg.interval, rtt_us, cfg.payload_size)
            self.report.latency(sample, self.kind)

            seq_index += 1
            if cfg.count is not None and seq_index >= cfg.count:
                break
            await token.sleep(cfg.interval)

        token.cancel(f"{seq_index} probes sent")


class ParallelProber(Benchmark):
    """
    Pipelined probing: sends never wait for earlier probes to be answered.

    Outstanding probes live in a PendingProbeTable. The receive loop removes
    answered entries, the sweep (run as the report loop) expires entries
    older than the probe timeout and records them as lost.
    """

    kind = "latency.parallel"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.codec = PayloadCodec(timed=True, clock=self.clock)
        self.pending = PendingProbeTable(max_size=self.config.max_pending)
        self.sent = 0
        self._drained = asyncio.Event()
        self._drained.set()

    @property
    def subscriptions(self) -> list[str]:
        return [self.config.pong_topic]

    @property
    def sweep_interval(self) -> float:
        return self.config.probe_timeout / 4

    def _lost(self, entries: list[tuple[int, int]]) -> None:
        for seq_index, _ in entries:
            sample = LatencySample(seq_index, self.config.interval, None, self.config.payload_size)
            self.report.latency(sample, self.kind)
        if not self.pending:
            self._drained.set()

    def sweep(self) -> None:
        timeout_us = int(self.config.probe_timeout * 1_000_000)
        self._lost(self.pending.expire(self.clock.now_us(), timeout_us))

    async def send_loop(self, token: CancelToken) -> None:
        cfg = self.config
        logger.info("Start parallel ping %d on %s -> %s", cfg.sender_id, cfg.ping_topic, cfg.pong_topic)

        seq_index = 0
        while cfg.count is None or seq_index < cfg.count:
            self._lost(self.pending.insert(seq_index & U32_MASK, self.clock.now_us()))
            self._drained.clear()
            payload = self.codec.encode(cfg.sender_id, seq_index, cfg.payload_size)
            await token.run(self.client.publish(cfg.ping_topic, payload, cfg.qos))
            self.sent += 1
            seq_index += 1
            if cfg.count is not None and seq_index >= cfg.count:
                break
            await token.sleep(cfg.interval)

        try:
            await token.run(self._drained.wait(), timeout=cfg.probe_timeout)
        except TimeoutError:
            pass
        self._lost(self.pending.expire(self.clock.now_us(), -1))
        token.cancel(f"{seq_index} probes sent")

    async def receive_loop(self, token: CancelToken) -> None:
        cfg = self.config
        while True:
            message = await self.receive(token, cfg.pong_topic)
            try:
                info = self.codec.decode(message.payload, cfg.payload_size)
            except DecodeError as e:
                logger.error("Unable to parse payload: %s", e)
                continue
            if info.sender_id != cfg.sender_id:
                logger.debug("Ignoring pong from foreign sender %d", info.sender_id)
                continue

            send_time_us = self.pending.pop(info.seq_index)
            if send_time_us is None:
                logger.debug("Ignoring pong %d with no pending probe", info.seq_index)
                continue

            rtt_us = self.clock.now_us() - send_time_us
            sample = LatencySample(info.seq_index, cfg.interval, rtt_us, cfg.payload_size)
            self.report.latency(sample, self.kind)
            if not self.pending:
                self._drained.set()

    async def report_loop(self, token: CancelToken) -> None:
        while True:
            await token.sleep(self.sweep_interval)
            self.sweep()
