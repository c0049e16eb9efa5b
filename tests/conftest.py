import pytest

from pubsub_bench.clock import ManualClock
from pubsub_bench.transport import LoopbackBroker


@pytest.fixture(autouse=True)
def clear_loopback_brokers():
    """Named loopback brokers are process-wide; give every test fresh ones."""
    LoopbackBroker.reset()
    yield
    LoopbackBroker.reset()


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock(now_us=1_000)
