from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, TypeVar

from core.storage.errors import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

WRITE_TIMEOUT_SECONDS = 240


def _expire(deadline: "asyncio.Future[None]") -> None:
    if not deadline.done():
        deadline.set_result(None)


def _consume_abandoned(operation: str):
    def callback(task: "asyncio.Future[Any]") -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            logger.warning("Abandoned %s finished with error: %s", operation, err.__class__.__name__)
        else:
            logger.info("Abandoned %s finished after its caller gave up", operation)

    return callback


class TimeoutGuard:
    """Races an operation against a deadline timer.

    The operation is never cancelled when the deadline wins: blocking SFTP and
    S3 calls run in worker threads that cannot be interrupted, so the caller is
    released and the abandoned result is only logged. The timer handle is
    cancelled on every exit path.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.TimerHandle] = set()

    @property
    def pending_timers(self) -> int:
        return len(self._pending)

    async def run(
        self,
        operation: str,
        awaitable: Awaitable[T],
        *,
        seconds: float,
        target: str | None = None,
    ) -> T:
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)
        deadline: asyncio.Future[None] = loop.create_future()
        timer = loop.call_later(seconds, _expire, deadline)
        self._pending.add(timer)
        started = time.monotonic()
        try:
            await asyncio.wait({task, deadline}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            timer.cancel()
            self._pending.discard(timer)
            if not deadline.done():
                deadline.cancel()
            if not task.done():
                task.add_done_callback(_consume_abandoned(operation))

        if task.done():
            return task.result()

        elapsed = time.monotonic() - started
        logger.error("Timed out: operation=%s elapsed=%.3fs ceiling=%ss", operation, elapsed, seconds)
        raise OperationTimeoutError(
            f"{operation} exceeded {seconds}s",
            operation=operation,
            target=target,
            elapsed=elapsed,
        )


timeout_guard = TimeoutGuard()
