"""
Task management for the cosync event loop.

This module provides classes for creating, managing, and interacting with
tasks in the cosync event loop. The main class is TaskHandle, which represents a
spawned task and allows operations like cancellation and joining. :class:`Waiter`
is the registration a blocked task leaves with a synchronization primitive.

Examples:
    >>> from cosync.core.event_loop.event_loop import EventLoop
    >>> from cosync.core.event_loop.primitives import spawn
    >>>
    >>> async def worker():
    ...     return 42
    >>>
    >>> async def main():
    ...     task = await spawn(worker())
    ...     print(f"task is a TaskHandle: {isinstance(task, TaskHandle)}")
    ...     result = await task.join()
    ...     print(f"Task result: {result}")
    ...     return result
    >>>
    >>> loop = EventLoop()
    >>> result = loop.run_until_complete(main(), join=True)
    task is a TaskHandle: True
    Task result: 42
    >>> print(result)
    42
"""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass, field
from types import coroutine
from typing import TYPE_CHECKING, Any, Generic, TypeVar, cast, final

from .commands import CancelCommand, Command, JoinCommand
from .types import RawTask

if TYPE_CHECKING:
    from .event_loop import EventLoop  # Only import during type checking

_T_co = TypeVar("_T_co", covariant=True)


@final
class TaskHandle(Generic[_T_co]):
    """
    A handle to a spawned task that allows cancellation and joining.

    TaskHandle objects are returned by the spawn primitive and represent
    concurrent tasks running in the event loop. They can be used to:

    - Check if a task has completed, failed, or been cancelled
    - Cancel a running task
    - Join (wait for) a task to complete and get its return value
    """

    def __init__(self, event_loop: EventLoop, raw_task: RawTask[Command, object, _T_co]):
        """
        Initialize a TaskHandle.

        Args:
            event_loop: The event loop managing this task
            raw_task: The raw coroutine task being managed
        """
        self.event_loop = event_loop
        self.raw_task = raw_task

    def cancel(
        self,
    ) -> Generator[CancelCommand[_T_co], object, _T_co]:
        """
        Cancel this task and return an awaitable for its outcome.

        Cancellation starts immediately, whether or not the result is awaited.
        A task blocked on a semaphore, event, completion handle or sleep is
        detached from it first, so it will not be woken a second time.

        When awaited, you will receive:
        - The value returned by the task (e.g., from a finally block or except handler)
        - None if the task let TaskCancelled propagate
        - Any other exception raised during cleanup or prior to cancellation

        Returns:
            An awaitable that resolves to the task's result.
        """
        self.event_loop.cancel(self.raw_task)

        @coroutine
        def _wait_for_cancellation() -> Generator[CancelCommand[_T_co], object, _T_co]:
            received = yield CancelCommand(self)
            return cast(_T_co, received)

        return _wait_for_cancellation()

    @property
    def is_finished(self) -> bool:
        """True if the task finished execution without errors."""
        return self.raw_task in self.event_loop.finished

    @property
    def is_error(self) -> bool:
        """True if the task raised an exception (not including cancellation)."""
        return self.raw_task in self.event_loop.exceptions and not self.is_cancelled

    @property
    def is_cancelled(self) -> bool:
        """True if the task was cancelled."""
        return self.raw_task in self.event_loop.cancelled

    @coroutine
    def join(
        self,
    ) -> Generator[JoinCommand[_T_co], object, _T_co]:
        """
        Wait for this task to complete and get its result.

        Returns:
            The value returned by the task.

        Raises:
            Exception: Any exception that was raised by the task.
            TaskCancelled: If the task was cancelled.
        """
        received = yield JoinCommand(self)
        return cast(_T_co, received)

    def __repr__(self) -> str:
        return f"<TaskHandle {self.raw_task!r}>"


@dataclass(eq=False)
class Waiter:
    """
    A blocked task's entry in the loop's wait registry.

    Primitives keep these handles instead of callbacks. The same handle may be
    registered with several primitives (see :func:`first_completed`); only the
    first wake delivered through :meth:`EventLoop.wake` resumes the task, after
    which the handle is inactive and later wakes are ignored.
    """

    loop: EventLoop
    task: RawTask[Command, Any, Any]
    active: bool = field(default=True)


@dataclass
class TaskCancelled(Exception):
    """
    Exception raised inside a task that is being cancelled.

    It is also raised when joining a task that has been cancelled.
    """

    by: TaskHandle[object]

    def __str__(self) -> str:
        return "Task was cancelled"


__all__ = [
    "TaskHandle",
    "TaskCancelled",
    "Waiter",
]
