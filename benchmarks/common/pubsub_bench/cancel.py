"""
Cooperative cancellation for a benchmark run.

A single CancelToken is shared by every task of a run. Tasks suspend through
the token (``sleep`` and ``run``) so that a deadline, a signal or a finished
bounded benchmark stops all of them the same way.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from .errors import RunCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None
        self._deadline_handle: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        logger.debug("Run cancelled: %s", reason)
        self.reason = reason
        self._event.set()
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None

    def set_deadline(self, seconds: float) -> None:
        """Cancel the token ``seconds`` from now. Needs a running loop."""
        loop = asyncio.get_running_loop()
        self._deadline_handle = loop.call_later(
            seconds, self.cancel, f"deadline of {seconds}s reached"
        )

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """
        Sleep for ``delay`` seconds.

        Raises:
            RunCancelled: the token fired before or during the sleep
        """
        if self.cancelled:
            raise RunCancelled(self.reason)
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RunCancelled(self.reason)

    async def run(self, aw: Awaitable[T], timeout: float | None = None) -> T:
        """
        Await ``aw`` unless the token fires first.

        Raises:
            RunCancelled: the token fired first, ``aw`` is cancelled
            asyncio.TimeoutError: ``timeout`` elapsed first, ``aw`` is cancelled
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise RunCancelled(self.reason)

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        if self.cancelled:
            raise RunCancelled(self.reason)
        raise asyncio.TimeoutError()
