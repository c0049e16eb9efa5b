import asyncio
from io import StringIO

import pytest

from pubsub_bench.clock import Clock
from pubsub_bench.codec import PayloadCodec
from pubsub_bench.config import BenchConfig, BenchmarkMode
from pubsub_bench.driver import BenchmarkDriver, DriverState
from pubsub_bench.report import ReportWriter
from pubsub_bench.responder import EchoResponder
from pubsub_bench.transport import LoopbackBroker, LoopbackClient


async def start(config: BenchConfig, out: StringIO) -> tuple[BenchmarkDriver, asyncio.Task]:
    driver = BenchmarkDriver(config, report=ReportWriter(out))
    task = asyncio.create_task(driver.run())
    while driver.state != DriverState.RUNNING:
        await asyncio.sleep(0.01)
    return driver, task


@pytest.mark.asyncio
async def test_subscriber_counts_every_message():
    sub_out = StringIO()
    subscriber, sub_task = await start(
        BenchConfig(mode=BenchmarkMode.SUB_THR, broker="loop://thr", payload_size=64,
                    report_interval=0.1, sender_id=2),
        sub_out,
    )

    pub_out = StringIO()
    publisher = BenchmarkDriver(
        BenchConfig(mode=BenchmarkMode.PUB_THR, broker="loop://thr", payload_size=64,
                    count=500, sender_id=1),
        report=ReportWriter(pub_out),
    )
    pub_summary = await publisher.run()
    await asyncio.sleep(0.3)
    subscriber.cancel("test finished")
    sub_summary = await sub_task

    assert pub_summary == {"published": 500}
    assert pub_out.getvalue() == ""
    assert sub_summary["received"] == 500

    lines = sub_out.getvalue().splitlines()
    assert lines
    for line in lines:
        size, rate = line.split(",")
        assert size == "64"
        assert int(rate) > 0


@pytest.mark.asyncio
async def test_subscriber_drops_malformed_payloads(caplog):
    out = StringIO()
    subscriber, sub_task = await start(
        BenchConfig(mode=BenchmarkMode.SUB_THR, broker="loop://bad", payload_size=8, sender_id=2),
        out,
    )

    client = LoopbackClient(LoopbackBroker.named("bad"))
    await client.connect()
    codec = PayloadCodec(timed=False)
    await client.publish("THROUGHPUT", b"\x01\x02")
    await client.publish("THROUGHPUT", codec.encode(1, 0, 16))
    await client.publish("THROUGHPUT", codec.encode(1, 1, 8))
    await client.publish("OTHER", codec.encode(1, 2, 8))
    await asyncio.sleep(0.05)

    subscriber.cancel("test finished")
    summary = await sub_task

    assert summary["received"] == 1
    assert "Unable to parse payload" in caplog.text


@pytest.mark.asyncio
async def test_publisher_reports_its_rate():
    out = StringIO()
    config = BenchConfig(
        mode=BenchmarkMode.PUB_THR, broker="loop://pubrate", payload_size=32,
        interval=0.002, count=100, report_interval=0.05, report_rate=True,
    )
    summary = await BenchmarkDriver(config, report=ReportWriter(out)).run()

    lines = out.getvalue().splitlines()
    assert summary["published"] == 100
    assert lines
    assert all(line.startswith("32,") for line in lines)
    assert summary["rate_windows"] == len(lines)


@pytest.mark.asyncio
async def test_request_response_with_reply_size():
    responder, responder_task = await start(
        BenchConfig(mode=BenchmarkMode.PONG, broker="loop://req", reply_size=256, sender_id=9),
        StringIO(),
    )

    out = StringIO()
    config = BenchConfig(
        mode=BenchmarkMode.REQ_THR, broker="loop://req", payload_size=8, reply_size=256,
        interval=0.002, count=100, report_interval=0.05, sender_id=3,
    )
    summary = await BenchmarkDriver(config, report=ReportWriter(out)).run()
    responder.cancel("test finished")
    assert (await responder_task) == {"echoed": 100}

    assert summary["completed"] == 100
    assert summary["lost"] == 0
    lines = out.getvalue().splitlines()
    assert lines
    for line in lines:
        size, rate, mean_latency_us = line.split(",")
        assert size == "256"
        assert int(rate) > 0
        assert int(mean_latency_us) >= 0


@pytest.mark.asyncio
async def test_requests_without_responder_are_lost():
    config = BenchConfig(
        mode=BenchmarkMode.REQ_THR, broker="loop://noreply", count=2, probe_timeout=0.05,
    )
    summary = await BenchmarkDriver(config, report=ReportWriter(StringIO())).run()
    assert summary == {"completed": 0, "lost": 2}


@pytest.mark.asyncio
async def test_responder_pads_replies():
    broker = LoopbackBroker.named("pad")
    client = LoopbackClient(broker)
    config = BenchConfig(mode=BenchmarkMode.PONG, broker="loop://pad", reply_size=64)
    responder = EchoResponder(client, config, Clock(), ReportWriter(StringIO()))

    request = PayloadCodec(timed=False).encode(7, 8, 8)
    reply = responder.respond(request)

    assert len(reply) == 64
    assert reply[:8] == request
