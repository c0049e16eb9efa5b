"""Click command group for the pub/sub benchmark harness."""

import logging
from pathlib import Path

import click

from .codec import TIMED_HEADER_SIZE
from .config import (
    DEFAULT_BROKER,
    DEFAULT_MAX_PAYLOAD,
    DEFAULT_PING_TOPIC,
    DEFAULT_PONG_TOPIC,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_REPORT_INTERVAL,
    DEFAULT_THROUGHPUT_TOPIC,
    BenchConfig,
    BenchmarkMode,
    parse_duration,
)
from .errors import ConfigurationError, TransportError
from .logs import configure_logging
from .runner import BenchmarkRunner
from .transport import QoS

logger = logging.getLogger(__name__)


class Duration(click.ParamType):
    """Durations like ``30s``, ``1m30s`` or ``250ms``, converted to seconds"""

    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return parse_duration(value)
        except ConfigurationError as e:
            self.fail(str(e), param, ctx)


DURATION = Duration()


def ping_pong_topics(func):
    func = click.option(
        "--pong-topic", default=DEFAULT_PONG_TOPIC, show_default=True,
        help="Topic carrying responses.",
    )(func)
    func = click.option(
        "--ping-topic", default=DEFAULT_PING_TOPIC, show_default=True,
        help="Topic carrying probes and requests.",
    )(func)
    return func


@click.group()
@click.option("-b", "--broker", default=DEFAULT_BROKER, show_default=True,
              help="Transport endpoint: host:port, mqtt://host:port or loop://name.")
@click.option("--qos", type=click.IntRange(0, 1), default=0, show_default=True,
              help="Quality of service for publish and subscribe.")
@click.option("--timeout", type=DURATION, default=None,
              help="Stop the whole run after this duration.")
@click.option("--sender-id", type=click.IntRange(0, 0xFFFFFFFF), default=None,
              help="Identity embedded in payloads (defaults to the process id).")
@click.option("--max-payload", type=click.IntRange(1), default=DEFAULT_MAX_PAYLOAD,
              show_default=True, help="Largest payload the transport may carry.")
@click.option("--scenario", default=None, help="Scenario label for the output records.")
@click.option("--name", default=None, help="Run label for the output records.")
@click.option("--results-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Write a JSON run summary into this directory.")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def cli(ctx, broker, qos, timeout, sender_id, max_payload, scenario, name, results_dir, verbose):
    """Latency and throughput benchmarks for pub/sub transports."""
    configure_logging(verbose)
    common = {
        "broker": broker,
        "qos": QoS(qos),
        "timeout": timeout,
        "max_payload": max_payload,
        "scenario": scenario,
        "name": name,
        "results_dir": results_dir,
    }
    if sender_id is not None:
        common["sender_id"] = sender_id
    ctx.obj = common


def run_benchmark(ctx: click.Context, mode: BenchmarkMode, **settings) -> None:
    try:
        config = BenchConfig(mode=mode, **ctx.obj, **settings).validate()
        BenchmarkRunner(config).run()
    except ConfigurationError as e:
        raise click.UsageError(str(e), ctx=ctx) from e
    except TransportError as e:
        logger.error("Transport failure: %s", e)
        raise click.ClickException(str(e)) from e


@cli.command()
@ping_pong_topics
@click.option("-p", "--payload-size", type=int, default=TIMED_HEADER_SIZE, show_default=True,
              help="Probe size in bytes.")
@click.option("-i", "--interval", type=float, required=True, help="Seconds between probes.")
@click.option("--probe-timeout", type=DURATION, default=DEFAULT_PROBE_TIMEOUT, show_default=True,
              help="Count a probe as lost after this long.")
@click.option("-n", "--count", type=click.IntRange(1), default=None, help="Stop after this many probes.")
@click.option("--parallel", is_flag=True, default=False,
              help="Keep sending without waiting for earlier probes.")
@click.option("--max-pending", type=click.IntRange(1), default=None,
              help="Bound on outstanding probes in parallel mode.")
@click.pass_context
def ping(ctx, ping_topic, pong_topic, payload_size, interval, probe_timeout, count, parallel, max_pending):
    """Measure latency by echoing probes through a pong responder."""
    mode = BenchmarkMode.PING_PARALLEL if parallel else BenchmarkMode.PING
    run_benchmark(
        ctx, mode,
        ping_topic=ping_topic, pong_topic=pong_topic, payload_size=payload_size,
        interval=interval, probe_timeout=probe_timeout, count=count, max_pending=max_pending,
    )


@cli.command()
@ping_pong_topics
@click.option("--reply-size", type=int, default=None,
              help="Answer with this many bytes instead of echoing the request.")
@click.pass_context
def pong(ctx, ping_topic, pong_topic, reply_size):
    """Echo every probe back to the prober."""
    run_benchmark(ctx, BenchmarkMode.PONG, ping_topic=ping_topic, pong_topic=pong_topic, reply_size=reply_size)


@cli.command("pub-thr")
@click.option("-t", "--topic", default=DEFAULT_THROUGHPUT_TOPIC, show_default=True)
@click.option("-p", "--payload-size", type=int, required=True, help="Message size in bytes.")
@click.option("-i", "--interval", type=float, default=0.0, show_default=True,
              help="Seconds between messages, 0 publishes back to back.")
@click.option("-n", "--count", type=click.IntRange(1), default=None, help="Stop after this many messages.")
@click.option("--print", "report_rate", is_flag=True, default=False, help="Report the publish rate.")
@click.option("--report-interval", type=DURATION, default=DEFAULT_REPORT_INTERVAL, show_default=True)
@click.pass_context
def pub_thr(ctx, topic, payload_size, interval, count, report_rate, report_interval):
    """Publish counting payloads as fast as possible."""
    run_benchmark(
        ctx, BenchmarkMode.PUB_THR,
        topic=topic, payload_size=payload_size, interval=interval, count=count,
        report_rate=report_rate, report_interval=report_interval,
    )


@cli.command("sub-thr")
@click.option("-t", "--topic", default=DEFAULT_THROUGHPUT_TOPIC, show_default=True)
@click.option("-p", "--payload-size", type=int, required=True, help="Expected message size in bytes.")
@click.option("--report-interval", type=DURATION, default=DEFAULT_REPORT_INTERVAL, show_default=True)
@click.pass_context
def sub_thr(ctx, topic, payload_size, report_interval):
    """Report the delivered message rate once per interval."""
    run_benchmark(
        ctx, BenchmarkMode.SUB_THR,
        topic=topic, payload_size=payload_size, report_interval=report_interval,
    )


@cli.command("req-thr")
@ping_pong_topics
@click.option("-p", "--payload-size", type=int, default=8, show_default=True, help="Request size in bytes.")
@click.option("--reply-size", type=int, default=None,
              help="Expected reply size (defaults to the request size).")
@click.option("-i", "--interval", type=float, default=0.0, show_default=True)
@click.option("--probe-timeout", type=DURATION, default=DEFAULT_PROBE_TIMEOUT, show_default=True)
@click.option("-n", "--count", type=click.IntRange(1), default=None)
@click.option("--report-interval", type=DURATION, default=DEFAULT_REPORT_INTERVAL, show_default=True)
@click.pass_context
def req_thr(ctx, ping_topic, pong_topic, payload_size, reply_size, interval, probe_timeout, count, report_interval):
    """Request/response throughput with mean round-trip latency."""
    run_benchmark(
        ctx, BenchmarkMode.REQ_THR,
        ping_topic=ping_topic, pong_topic=pong_topic, payload_size=payload_size,
        reply_size=reply_size, interval=interval, probe_timeout=probe_timeout,
        count=count, report_interval=report_interval,
    )


def main():
    """Entry point for console script"""
    cli(auto_envvar_prefix="PUBSUB_BENCH")
