import asyncio
from io import StringIO

import pytest

from pubsub_bench.clock import ManualClock
from pubsub_bench.codec import PayloadCodec
from pubsub_bench.config import BenchConfig, BenchmarkMode
from pubsub_bench.driver import MODES, BenchmarkDriver, DriverState
from pubsub_bench.errors import ConfigurationError, TransportError
from pubsub_bench.report import LatencySample, ReportWriter
from pubsub_bench.transport import LoopbackBroker, LoopbackClient


async def start_responder(broker: str, **settings) -> tuple[BenchmarkDriver, asyncio.Task]:
    driver = BenchmarkDriver(
        BenchConfig(mode=BenchmarkMode.PONG, broker=broker, sender_id=99, **settings),
        report=ReportWriter(StringIO()),
    )
    task = asyncio.create_task(driver.run())
    while driver.state != DriverState.RUNNING:
        await asyncio.sleep(0.01)
    return driver, task


def test_every_mode_has_a_benchmark():
    assert set(MODES) == set(BenchmarkMode)


def test_invalid_config_is_rejected_before_connecting():
    with pytest.raises(ConfigurationError):
        BenchmarkDriver(BenchConfig(mode=BenchmarkMode.PING, interval=0.1, payload_size=8))


def test_illegal_transition():
    driver = BenchmarkDriver(BenchConfig(mode=BenchmarkMode.SUB_THR, broker="loop://t"))
    with pytest.raises(RuntimeError):
        driver._transition(DriverState.RUNNING)


@pytest.mark.asyncio
async def test_ping_pong_over_loopback():
    responder, responder_task = await start_responder("loop://pingpong")

    out = StringIO()
    config = BenchConfig(
        mode=BenchmarkMode.PING, broker="loop://pingpong", payload_size=16,
        interval=0.1, count=10, sender_id=1,
    )
    driver = BenchmarkDriver(config, report=ReportWriter(out))
    summary = await driver.run()

    responder.cancel("test finished")
    assert (await responder_task)["echoed"] == 10

    lines = out.getvalue().splitlines()
    assert len(lines) == 10
    for line in lines:
        interval, half_rtt_us = line.split(",")
        assert interval == "0.1"
        assert int(half_rtt_us) >= 0
    assert summary["probes_answered"] == 10
    assert summary["probes_lost"] == 0
    assert driver.state == DriverState.TERMINATED
    assert not driver.client.connected


@pytest.mark.asyncio
async def test_probes_without_responder_are_lost(caplog):
    out = StringIO()
    config = BenchConfig(
        mode=BenchmarkMode.PING, broker="loop://silent", interval=0.01,
        probe_timeout=0.05, count=3,
    )
    summary = await BenchmarkDriver(config, report=ReportWriter(out)).run()

    assert out.getvalue() == ""
    assert summary["probes_lost"] == 3
    assert summary["probes_answered"] == 0
    assert "Probe 2 lost" in caplog.text


@pytest.mark.asyncio
async def test_foreign_replies_are_ignored():
    """Two probers share one responder; each only counts its own pongs"""
    responder, responder_task = await start_responder("loop://shared")

    outs = [StringIO(), StringIO()]
    drivers = [
        BenchmarkDriver(
            BenchConfig(
                mode=BenchmarkMode.PING, broker="loop://shared", interval=0.02,
                count=5, sender_id=sender_id,
            ),
            report=ReportWriter(out),
        )
        for sender_id, out in zip((1, 2), outs)
    ]
    summaries = await asyncio.gather(*(d.run() for d in drivers))
    responder.cancel("test finished")
    await responder_task

    for summary, out in zip(summaries, outs):
        assert summary["probes_answered"] == 5
        assert summary["probes_lost"] == 0
        assert len(out.getvalue().splitlines()) == 5


@pytest.mark.asyncio
async def test_parallel_probing_with_labels():
    responder, responder_task = await start_responder("loop://parallel")

    out = StringIO()
    config = BenchConfig(
        mode=BenchmarkMode.PING_PARALLEL, broker="loop://parallel", interval=0.01,
        count=20, sender_id=5, scenario="s1", name="run-a",
    )
    summary = await BenchmarkDriver(config, report=ReportWriter(out, labels=config.labels)).run()
    responder.cancel("test finished")
    await responder_task

    lines = out.getvalue().splitlines()
    assert len(lines) == 20
    seq_indices = set()
    for line in lines:
        transport, scenario, kind, name, size, interval, seq_index, rtt_us = line.split(",")
        assert (transport, scenario, kind, name) == ("loop", "s1", "latency.parallel", "run-a")
        assert (size, interval) == ("16", "0.01")
        assert int(rtt_us) >= 0
        seq_indices.add(int(seq_index))
    assert seq_indices == set(range(20))
    assert summary["probes_answered"] == 20


@pytest.mark.asyncio
async def test_parallel_probes_without_responder_are_swept():
    config = BenchConfig(
        mode=BenchmarkMode.PING_PARALLEL, broker="loop://void", interval=0.01,
        probe_timeout=0.1, count=5, max_pending=2,
    )
    summary = await BenchmarkDriver(config, report=ReportWriter(StringIO())).run()

    assert summary["probes_lost"] == 5
    assert summary["probes_answered"] == 0


@pytest.mark.asyncio
async def test_deadline_ends_the_run_gracefully():
    config = BenchConfig(mode=BenchmarkMode.SUB_THR, broker="loop://idle", timeout=0.1)
    driver = BenchmarkDriver(config, report=ReportWriter(StringIO()))

    summary = await driver.run()

    assert summary == {"received": 0}
    assert "deadline" in driver.token.reason
    assert driver.state == DriverState.TERMINATED


@pytest.mark.asyncio
async def test_connect_failure_terminates():
    class Unreachable(LoopbackClient):
        async def connect(self):
            raise TransportError("connection refused")

    def factory(endpoint, identity, max_payload):
        return Unreachable(LoopbackBroker.named("down"), identity, max_payload)

    config = BenchConfig(mode=BenchmarkMode.PING, broker="loop://down", interval=0.1)
    driver = BenchmarkDriver(config, client_factory=factory)

    with pytest.raises(TransportError):
        await driver.run()
    assert driver.state == DriverState.TERMINATED
    assert driver.benchmark is None


@pytest.mark.asyncio
async def test_publish_failure_ends_the_run():
    clients = []

    def factory(endpoint, identity, max_payload):
        client = LoopbackClient(LoopbackBroker.named("broken"), identity, max_payload)
        client.fail_publish = OSError("broken pipe")
        clients.append(client)
        return client

    config = BenchConfig(mode=BenchmarkMode.PING, broker="loop://broken", interval=0.1)
    driver = BenchmarkDriver(config, report=ReportWriter(StringIO()), client_factory=factory)

    with pytest.raises(TransportError, match="broken pipe"):
        await asyncio.wait_for(driver.run(), timeout=5)
    assert driver.state == DriverState.TERMINATED
    assert not clients[0].connected
    assert "transport failure" in driver.token.reason


@pytest.mark.asyncio
async def test_unsupported_scheme():
    config = BenchConfig(mode=BenchmarkMode.SUB_THR, broker="carrier-pigeon://coop")
    driver = BenchmarkDriver(config)
    with pytest.raises(ConfigurationError):
        await driver.run()
    assert driver.state == DriverState.TERMINATED


async def faulty_echo(client: LoopbackClient, future_codec: PayloadCodec) -> None:
    """Answer every ping with a wrong-size reply, then a future timestamp, then the echo"""
    identity = PayloadCodec(timed=False)
    while True:
        message = await client.next_message()
        info = identity.decode(message.payload, len(message.payload))
        await client.publish("PONG", message.payload + b"\x00")
        await client.publish(
            "PONG", future_codec.encode(info.sender_id, info.seq_index, len(message.payload))
        )
        await client.publish("PONG", message.payload)


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", [BenchmarkMode.PING, BenchmarkMode.PING_PARALLEL])
async def test_malformed_replies_do_not_end_the_wait(mode, caplog):
    responder = LoopbackClient(LoopbackBroker.named("faulty"))
    await responder.connect()
    await responder.subscribe("PING")
    echo = asyncio.create_task(faulty_echo(responder, PayloadCodec(clock=ManualClock(now_us=10**12))))

    out = StringIO()
    config = BenchConfig(
        mode=mode, broker="loop://faulty", interval=0.01, count=4, probe_timeout=0.5, sender_id=3,
    )
    driver = BenchmarkDriver(config, report=ReportWriter(out), clock=ManualClock(now_us=1_000))
    summary = await driver.run()
    echo.cancel()
    await asyncio.gather(echo, return_exceptions=True)

    assert summary["probes_answered"] == 4
    assert summary["probes_lost"] == 0
    assert len(out.getvalue().splitlines()) == 4
    assert "expected a payload of 16 bytes" in caplog.text
    assert "ahead of the clock" in caplog.text


class TimedReport(ReportWriter):
    """Remembers when each lost probe was reported"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lost_at: list[float] = []

    def latency(self, sample: LatencySample, kind: str = "latency.sequential") -> None:
        if sample.lost:
            self.lost_at.append(asyncio.get_running_loop().time())
        super().latency(sample, kind)


@pytest.mark.asyncio
async def test_parallel_sweep_reports_losses_while_sending():
    report = TimedReport(StringIO())
    config = BenchConfig(
        mode=BenchmarkMode.PING_PARALLEL, broker="loop://sweep", interval=0.02,
        probe_timeout=0.04, count=25,
    )
    driver = BenchmarkDriver(config, report=report)

    started = asyncio.get_running_loop().time()
    summary = await driver.run()

    assert summary["probes_lost"] == 25
    # Sending alone takes at least 0.48s; the first loss is due after ~0.05s
    assert report.lost_at[0] - started < 0.3
    assert sum(1 for t in report.lost_at if t - started < 0.45) >= 5
