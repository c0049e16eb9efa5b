import asyncio

import pytest

from pubsub_bench.cancel import CancelToken
from pubsub_bench.errors import RunCancelled


@pytest.mark.asyncio
async def test_sleep_returns_when_not_cancelled():
    token = CancelToken()
    await token.sleep(0.01)
    assert not token.cancelled


@pytest.mark.asyncio
async def test_sleep_is_interrupted_by_cancel():
    token = CancelToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel, "stop")

    with pytest.raises(RunCancelled):
        await token.sleep(10)
    assert token.reason == "stop"


@pytest.mark.asyncio
async def test_first_reason_wins():
    token = CancelToken()
    token.cancel("first")
    token.cancel("second")
    assert token.reason == "first"

    with pytest.raises(RunCancelled):
        await token.sleep(0)


@pytest.mark.asyncio
async def test_run_returns_the_result():
    token = CancelToken()

    async def answer():
        await asyncio.sleep(0)
        return 42

    assert await token.run(answer()) == 42


@pytest.mark.asyncio
async def test_run_cancels_the_awaitable():
    token = CancelToken()
    started = asyncio.Event()
    cancelled = False

    async def forever():
        nonlocal cancelled
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled = True
            raise

    async def stop():
        await started.wait()
        token.cancel("stop")

    asyncio.create_task(stop())
    with pytest.raises(RunCancelled):
        await token.run(forever())
    assert cancelled


@pytest.mark.asyncio
async def test_run_timeout():
    token = CancelToken()
    with pytest.raises(asyncio.TimeoutError):
        await token.run(asyncio.sleep(10), timeout=0.01)
    assert not token.cancelled


@pytest.mark.asyncio
async def test_run_on_a_cancelled_token_never_starts():
    token = CancelToken()
    token.cancel()
    with pytest.raises(RunCancelled):
        await token.run(asyncio.sleep(10))


@pytest.mark.asyncio
async def test_deadline():
    token = CancelToken()
    token.set_deadline(0.02)

    await asyncio.wait_for(token.wait(), timeout=1)
    assert token.cancelled
    assert "deadline" in token.reason


@pytest.mark.asyncio
async def test_cancelling_the_caller_cancels_the_awaitable():
    token = CancelToken()
    started = asyncio.Event()
    cancelled = False

    async def forever():
        nonlocal cancelled
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled = True
            raise

    caller = asyncio.create_task(token.run(forever()))
    await started.wait()
    caller.cancel()

    with pytest.raises(asyncio.CancelledError):
        await caller
    await asyncio.sleep(0.01)
    assert cancelled
