import logging
from io import StringIO

import pytest

from pubsub_bench.counter import RateSample
from pubsub_bench.metrics import LatencyStats, RateStats, calculate_percentile
from pubsub_bench.report import LatencySample, ReportWriter


@pytest.fixture
def out() -> StringIO:
    return StringIO()


def test_latency_record_is_half_the_round_trip(out):
    writer = ReportWriter(out)
    writer.latency(LatencySample(seq_index=0, interval=0.1, rtt_us=501))
    assert out.getvalue() == "0.1,250\n"


def test_lost_probe_is_logged_not_written(out, caplog):
    writer = ReportWriter(out)
    with caplog.at_level(logging.WARNING):
        writer.latency(LatencySample(seq_index=3, interval=0.1, rtt_us=None))

    assert out.getvalue() == ""
    assert writer.lost == 1
    assert "Probe 3 lost" in caplog.text


def test_labelled_records(out):
    writer = ReportWriter(out, labels=("mqtt", "s1", "run-a"))
    writer.latency(LatencySample(7, 0.5, 1000, payload_size=64), "latency.parallel")
    writer.rate(RateSample(1024, 1.0, 10, 10.0), "throughput")

    assert out.getvalue().splitlines() == [
        "mqtt,s1,latency.parallel,run-a,64,0.5,7,1000",
        "mqtt,s1,throughput,run-a,1024,10",
    ]


def test_rates_are_floored(out):
    writer = ReportWriter(out)
    writer.rate(RateSample(64, 0.3, 100, 333.33))
    writer.rate(RateSample(8, 1.0, 2, 2.0, mean_latency_us=1234.9), "query.throughput")

    assert out.getvalue().splitlines() == ["64,333", "8,2,1234"]


def test_summary(out):
    writer = ReportWriter(out)
    for seq_index, rtt_us in enumerate([200, 400, 600, None]):
        writer.latency(LatencySample(seq_index, 0.1, rtt_us))

    summary = writer.summary()

    assert summary["probes_answered"] == 3
    assert summary["probes_lost"] == 1
    assert summary["half_rtt_min_us"] == 100
    assert summary["half_rtt_max_us"] == 300
    assert summary["half_rtt_mean_us"] == 200.0
    assert "rate_windows" not in summary


def test_summary_without_samples_is_empty(out):
    assert ReportWriter(out).summary() == {}


def test_percentiles():
    values = list(range(1, 101))
    assert calculate_percentile(values, 50) == 51
    assert calculate_percentile(values, 99) == 100
    assert calculate_percentile([], 50) == 0.0

    stats = LatencyStats.from_measurements(values)
    assert stats.samples == 100
    assert stats.p999 is None


def test_rate_stats():
    stats = RateStats.from_samples([100.0, 300.0], [10.0, 30.0])
    assert stats.to_dict() == {
        "rate_windows": 2,
        "rate_mean_msg_per_s": 200.0,
        "rate_min_msg_per_s": 100.0,
        "rate_max_msg_per_s": 300.0,
        "mean_latency_us": 20.0,
    }


@pytest.mark.parametrize("interval, record", [(1.0, "1,50\n"), (0.25, "0.25,50\n"), (2, "2,50\n")])
def test_interval_is_written_without_trailing_zeros(out, interval, record):
    ReportWriter(out).latency(LatencySample(0, interval, 100))
    assert out.getvalue() == record
