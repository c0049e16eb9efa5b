"""
BenchmarkDriver - connects, subscribes and runs one benchmark role.

    CONNECTING -> SUBSCRIBING -> RUNNING -> TERMINATED

Any state may jump to TERMINATED on a transport error. RUNNING ends when
the cancellation token fires (deadline, signal, bounded run finished); the
loops stop at their next suspension point and in-flight probes are dropped.
"""

import asyncio
import logging
import signal
from enum import StrEnum
from typing import Callable

from .benchmark import Benchmark
from .cancel import CancelToken
from .clock import Clock
from .config import BenchConfig, BenchmarkMode
from .errors import RunCancelled, TransportError
from .prober import ParallelProber, SequentialProber
from .report import ReportWriter
from .responder import EchoResponder
from .throughput import PublishThroughput, RequestThroughput, SubscribeThroughput
from .transport import Client, open_client

logger = logging.getLogger(__name__)


class DriverState(StrEnum):
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    RUNNING = "running"
    TERMINATED = "terminated"


_TRANSITIONS = {
    DriverState.CONNECTING: {DriverState.SUBSCRIBING, DriverState.TERMINATED},
    DriverState.SUBSCRIBING: {DriverState.RUNNING, DriverState.TERMINATED},
    DriverState.RUNNING: {DriverState.TERMINATED},
    DriverState.TERMINATED: set(),
}

MODES: dict[BenchmarkMode, type[Benchmark]] = {
    BenchmarkMode.PING: SequentialProber,
    BenchmarkMode.PING_PARALLEL: ParallelProber,
    BenchmarkMode.PONG: EchoResponder,
    BenchmarkMode.PUB_THR: PublishThroughput,
    BenchmarkMode.SUB_THR: SubscribeThroughput,
    BenchmarkMode.REQ_THR: RequestThroughput,
}


class BenchmarkDriver:
    """
    Owns the clock, the cancellation token and the transport client of a run.

    Args:
        config: validated benchmark settings
        report: record writer, stdout by default
        client_factory: builds the (unconnected) client, ``open_client`` by default
        clock: epoch for every embedded timestamp, created here by default
        handle_signals: cancel the run on SIGINT/SIGTERM
    """

    def __init__(
        self,
        config: BenchConfig,
        report: ReportWriter | None = None,
        client_factory: Callable[[str, str, int], Client] = open_client,
        clock: Clock | None = None,
        handle_signals: bool = False,
    ):
        self.config = config.validate()
        self.report = report or ReportWriter(labels=config.labels)
        self.client_factory = client_factory
        self.clock = clock or Clock()
        self.handle_signals = handle_signals

        self.state = DriverState.CONNECTING
        self.token: CancelToken | None = None
        self.client: Client | None = None
        self.benchmark: Benchmark | None = None

    def _transition(self, new_state: DriverState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal driver transition {self.state} -> {new_state}")
        logger.debug("Driver %s -> %s", self.state, new_state)
        self.state = new_state

    def cancel(self, reason: str = "cancelled") -> None:
        if self.token is not None:
            self.token.cancel(reason)

    async def run(self) -> dict:
        """
        Run until cancelled or a transport failure.

        Returns:
            the benchmark's summary

        Raises:
            TransportError: connect, subscribe, publish or receive failed
        """
        cfg = self.config
        self.token = CancelToken()
        # The epoch must exist before the first probe is encoded
        self.clock.start()
        if cfg.timeout is not None:
            self.token.set_deadline(cfg.timeout)
        if self.handle_signals:
            self._install_signal_handlers()

        try:
            self.client = self.client_factory(cfg.broker, cfg.client_id, cfg.max_payload)
            await self.token.run(self.client.connect())
            self._transition(DriverState.SUBSCRIBING)

            self.benchmark = MODES[cfg.mode](self.client, cfg, self.clock, self.report)
            for topic in self.benchmark.subscriptions:
                await self.token.run(self.client.subscribe(topic, cfg.qos))
            self._transition(DriverState.RUNNING)

            logger.info("Running %s against %s", cfg.mode, cfg.broker)
            await self._run_loops(self.benchmark)
        except RunCancelled:
            logger.info("Run cancelled before it started: %s", self.token.reason)
        finally:
            self._transition(DriverState.TERMINATED)
            self.token.cancel("terminated")
            if self.handle_signals:
                self._remove_signal_handlers()
            if self.client is not None:
                await self.client.disconnect()

        logger.info("Run finished: %s", self.token.reason)
        return self.benchmark.summary() if self.benchmark is not None else {}

    async def _run_loops(self, benchmark: Benchmark) -> None:
        loops = {
            "send": benchmark.send_loop,
            "receive": benchmark.receive_loop,
            "report": benchmark.report_loop,
        }
        tasks = {
            asyncio.create_task(self._guard(name, loop), name=f"{benchmark.kind}-{name}")
            for name, loop in loops.items()
        }
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None:
                raise error

    async def _guard(self, name: str, loop) -> None:
        try:
            await loop(self.token)
        except RunCancelled:
            logger.debug("%s loop stopped", name)
        except TransportError:
            self.token.cancel(f"transport failure in {name} loop")
            raise

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.cancel, f"received {sig.name}")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
