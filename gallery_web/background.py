"""
Detached background work (e.g. token revocation after login).
Tasks outlive the request that spawned them; their results are discarded but
failures are logged. Strong references are held until completion so the loop
cannot garbage-collect a running task.
"""
import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)

_tasks: set[asyncio.Task] = set()


def _log_failure(task: asyncio.Task) -> None:
    _tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed: %r", task.get_name(), exc, exc_info=exc)


def spawn_detached(coro: Coroutine, name: str | None = None) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_log_failure)
    return task


def pending() -> int:
    return len(_tasks)


async def drain(timeout: float = 5.0) -> None:
    """Wait for outstanding background tasks (used at shutdown and in tests)."""
    if not _tasks:
        return
    done, not_done = await asyncio.wait(set(_tasks), timeout=timeout)
    for task in not_done:
        logger.warning("Cancelling background task %s at shutdown", task.get_name())
        task.cancel()
    if not_done:
        await asyncio.gather(*not_done, return_exceptions=True)
