"""
Public awaitable primitives for the cosync event loop.

These are thin wrappers that yield a command to the running loop and return
the loop's reply. They only work inside a task driven by
:meth:`EventLoop.run_until_complete`.

Examples:
    >>> from cosync.core.event_loop.event_loop import EventLoop
    >>> from cosync.core.event_loop.primitives import sleep, spawn
    >>>
    >>> async def child():
    ...     await sleep(0.01)
    ...     return "child done"
    >>>
    >>> async def main():
    ...     handle = await spawn(child())
    ...     return await handle.join()
    >>>
    >>> EventLoop().run_until_complete(main(), join=True)
    'child done'
"""

from collections.abc import Generator
from timeit import default_timer as timer
from types import coroutine
from typing import Any, TypeVar, cast

from .commands import Command, ExitCommand, SleepCommand, SpawnCommand
from .tasks import TaskHandle
from .types import DeltaTime, RawTask

_T_co = TypeVar("_T_co", covariant=True)


@coroutine
def spawn(
    raw_task: RawTask[Command, Any, _T_co],
) -> Generator[SpawnCommand[_T_co], object, TaskHandle[_T_co]]:
    """
    Schedule a coroutine as a new concurrent task.

    The new task runs first, until its first suspension point; the spawning
    task resumes afterwards.

    Args:
        raw_task: The coroutine to run.

    Returns:
        A :class:`TaskHandle` for the new task.
    """
    handle = yield SpawnCommand(raw_task)
    return cast(TaskHandle[_T_co], handle)


@coroutine
def sleep(duration: DeltaTime) -> Generator[SleepCommand, None, DeltaTime]:
    """
    Suspend the current task for at least ``duration`` seconds.

    ``sleep(0)`` moves the task to the back of the ready queue, letting every
    task that is already runnable go first.

    Returns:
        The time actually slept, in seconds.
    """
    start = timer()
    yield SleepCommand(start + duration)
    return timer() - start


@coroutine
def exit(
    return_value: object = None, exception: Exception | None = None
) -> Generator[ExitCommand, None, None]:
    """
    Stop the event loop immediately, abandoning any remaining tasks.

    Args:
        return_value: Returned by ``run_until_complete(..., join=True)``.
        exception: If given, raised from ``run_until_complete`` instead.
    """
    yield ExitCommand(return_value, exception)


__all__ = [
    "exit",
    "sleep",
    "spawn",
]
