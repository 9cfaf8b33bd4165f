"""
Event Loop Instrumentation System.

This module provides a flexible instrumentation system for monitoring and debugging
the cosync event loop. It captures task scheduling events and the state changes of
the synchronization primitives (semaphores, events, channels).

The instrumentation system uses a context manager pattern. Instruments can be
nested; every active instrument receives every event, innermost first.

Example:
    >>> from cosync.core.event_loop.event_loop import EventLoop
    >>> from cosync.core.event_loop.instrumentation import PrintInstrument
    >>> from cosync.core.event_loop.channels import Channel
    >>>
    >>> async def channel_example():
    ...     channel = Channel()
    ...     await channel.push(42)
    ...     return await channel.consume()
    >>>
    >>> event_loop = EventLoop()
    >>> with PrintInstrument():
    ...     result = event_loop.run_until_complete(channel_example(), join=True)
    ...
    [CHANNEL-PUSH] Item pushed to channel: 42
    [EVENT-SET] Event(set) woke 0 waiter(s)
    [CHANNEL-CONSUME] Item consumed from channel: 42
    >>> print(result)
    42
"""

from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING, Any, Final, TypeVar

from typing_extensions import Self, override

if TYPE_CHECKING:
    from cosync.core.event_loop.channels import Channel
    from cosync.core.event_loop.commands import Command
    from cosync.core.event_loop.synchronization import BaseEvent, Semaphore
    from cosync.core.event_loop.types import RawTask

logger = logging.getLogger(__name__)

T = TypeVar("T")

_instrument_stack: ContextVar[tuple["EventLoopInstrument", ...]] = ContextVar(
    "_instrument_stack", default=()
)


@dataclass
class TaskSendMetadata:
    """Metadata for task send operations."""
    task: "RawTask[Command, Any, Any]"
    send_value: Any


@dataclass
class TaskThrowMetadata:
    """Metadata for task throw operations."""
    task: "RawTask[Command, Any, Any]"
    exception: Exception


class EventLoopInstrument:
    """
    Base class for event loop instrumentation.

    This class provides hooks for various event loop operations. Subclasses can
    override these methods to implement custom monitoring or logging.
    """
    _tokens: list[Token[tuple["EventLoopInstrument", ...]]]

    def on_channel_push(self, channel: "Channel[T]", item: T) -> None:
        """
        Called every time a channel accepts an item.

        If the producer blocks on a full channel, this callback fires once a
        slot frees up and the item is appended.

        Args:
            channel: The channel the item was pushed to.
            item: The item that was pushed.
        """
        pass

    def on_channel_consume(self, channel: "Channel[T]", item: T) -> None:
        """
        Called every time a channel hands an item to a consumer.

        Args:
            channel: The channel the item was taken from.
            item: The item that was consumed.
        """
        pass

    def on_semaphore_acquire(self, semaphore: "Semaphore", count: int) -> None:
        """
        Called when a task is admitted by a semaphore.

        Args:
            semaphore: The semaphore (or lock) that was acquired.
            count: Slots left after the acquisition.
        """
        pass

    def on_semaphore_release(self, semaphore: "Semaphore", count: int) -> None:
        """
        Called when a slot is returned to a semaphore.

        Args:
            semaphore: The semaphore (or lock) that was released.
            count: Slots available after the release.
        """
        pass

    def on_event_set(self, event: "BaseEvent", woken: int) -> None:
        """
        Called when an event is set.

        Args:
            event: The event that was set.
            woken: The number of waiters released by this call.
        """
        pass

    def on_task_before_send(self, metadata: TaskSendMetadata) -> None:
        """
        Called before a task's send() method is invoked.

        Args:
            metadata: Task send metadata including the task and value being sent
        """
        pass

    def on_task_after_send(self, metadata: TaskSendMetadata, command: "Command") -> None:
        """
        Called after a task's send() method completes successfully.

        Args:
            metadata: Task send metadata including the task and value that was sent
            command: The command yielded by the task
        """
        pass

    def on_task_before_throw(self, metadata: TaskThrowMetadata) -> None:
        """
        Called before a task's throw() method is invoked.

        Args:
            metadata: Task throw metadata including the task and exception being thrown
        """
        pass

    def on_task_after_throw(self, metadata: TaskThrowMetadata, command: "Command") -> None:
        """
        Called after a task's throw() method completes successfully.

        Args:
            metadata: Task throw metadata including the task and exception that was thrown
            command: The command yielded by the task
        """
        pass

    def on_task_completed(self, task: "RawTask[Command, Any, Any]", result: Any) -> None:
        """
        Called when a task completes successfully (StopIteration).

        Args:
            task: The task that completed
            result: The return value of the task
        """
        pass

    def on_task_error(self, task: "RawTask[Command, Any, Any]", exception: Exception) -> None:
        """
        Called when a task raises an exception.

        Args:
            task: The task that raised the exception
            exception: The exception that was raised
        """
        pass

    def on_task_cancelled(self, task: "RawTask[Command, Any, Any]", exception: Exception) -> None:
        """
        Called when a task is cancelled (TaskCancelled exception).

        Args:
            task: The task that was cancelled
            exception: The TaskCancelled exception
        """
        pass

    def __enter__(self: Self) -> Self:
        if not hasattr(self, "_tokens"):
            self._tokens = []
        # stack is innermost-first
        self._tokens.append(_instrument_stack.set((self, *_instrument_stack.get())))
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        _instrument_stack.reset(self._tokens.pop())
        return False


class _CompositeInstrument(EventLoopInstrument):
    """Fans every hook out to several instruments, innermost first."""

    def __init__(self, instruments: tuple[EventLoopInstrument, ...]) -> None:
        self.instruments = instruments

    def __getattribute__(self, name: str) -> Any:
        if name.startswith("on_"):
            instruments = object.__getattribute__(self, "instruments")

            def fan_out(*args: Any, **kwargs: Any) -> None:
                for instrument in instruments:
                    getattr(instrument, name)(*args, **kwargs)

            return fan_out
        return object.__getattribute__(self, name)


class PrintInstrument(EventLoopInstrument):
    """
    Event loop instrument that prints information to stdout.

    This instrument outputs one line per primitive state change.
    """
    print = print

    @override
    def on_channel_push(self, channel: "Channel[T]", item: T) -> None:
        self.print(f"[CHANNEL-PUSH] Item pushed to channel: {item!r}")

    @override
    def on_channel_consume(self, channel: "Channel[T]", item: T) -> None:
        self.print(f"[CHANNEL-CONSUME] Item consumed from channel: {item!r}")

    @override
    def on_semaphore_acquire(self, semaphore: "Semaphore", count: int) -> None:
        self.print(f"[SEM-ACQUIRE] {semaphore!r} acquired, {count} slot(s) left")

    @override
    def on_semaphore_release(self, semaphore: "Semaphore", count: int) -> None:
        self.print(f"[SEM-RELEASE] {semaphore!r} released, {count} slot(s) free")

    @override
    def on_event_set(self, event: "BaseEvent", woken: int) -> None:
        self.print(f"[EVENT-SET] {event!r} woke {woken} waiter(s)")


class LogInstrument(PrintInstrument):
    """
    Event loop instrument that logs information using the logging module.

    This instrument uses the debug log level for all messages.
    """
    print = logger.debug


EMPTY_INSTRUMENT: Final[EventLoopInstrument] = EventLoopInstrument()


def get_current_instrument() -> EventLoopInstrument:
    """
    Get the current instrumentation context.

    Returns:
        The active instrument if exactly one is active, a composite that
        forwards to all of them if several are nested, or an empty
        instrument if none is active.
    """
    stack = _instrument_stack.get()
    if not stack:
        return EMPTY_INSTRUMENT
    if len(stack) == 1:
        return stack[0]
    return _CompositeInstrument(stack)


__all__ = [
    "EventLoopInstrument",
    "PrintInstrument",
    "LogInstrument",
    "TaskSendMetadata",
    "TaskThrowMetadata",
    "get_current_instrument",
]
