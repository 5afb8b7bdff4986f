"""Detached asyncio tasks that must never affect the request that started them.

No external dependencies (Celery) required.
"""

import asyncio
from typing import Any, Awaitable, Callable

from app.core.logging import get_logger

logger = get_logger(__name__)

# Strong references so running tasks are not garbage collected
_background_tasks: set[asyncio.Task] = set()


def fire_and_forget(
    task_name: str,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Task:
    """Run ``func`` in the background, logging (not raising) its failures.

    Args:
        task_name: Label used in logs
        func: Async function to run
        *args, **kwargs: Arguments to pass to the function
    """
    async def _run() -> None:
        try:
            await func(*args, **kwargs)
        except asyncio.CancelledError:
            logger.info("background_task_cancelled", task_name=task_name)
            raise
        except Exception as e:
            logger.error("background_task_failed", task_name=task_name, error=str(e))

    task = asyncio.create_task(_run(), name=task_name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def pending_background_tasks() -> int:
    """Number of detached tasks still running."""
    return len(_background_tasks)


async def drain_background_tasks(timeout: float = 5.0) -> None:
    """Wait for detached tasks on shutdown, cancelling stragglers."""
    if not _background_tasks:
        return

    done, pending = await asyncio.wait(set(_background_tasks), timeout=timeout)
    for task in pending:
        task.cancel()
    logger.info("background_tasks_drained", completed=len(done), cancelled=len(pending))
