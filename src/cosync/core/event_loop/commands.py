"""
Internal Command Types for the cosync Event Loop
------------------------------------------------

This module defines the command types used by the cosync event loop to implement
its cooperative multitasking system. Commands are yielded by coroutines and
interpreted by the event loop to perform operations like task scheduling,
sleeping, and blocking on synchronization primitives.

.. warning::
    These command types are used internally by the event loop to control task
    scheduling and suspension. They are not part of the public API. Normal users
    should rely on the public awaitable primitives (e.g. :func:`sleep`,
    :func:`spawn`, :meth:`Event.wait`) rather than yielding these commands
    directly.
"""

from abc import ABC
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from cosync.core.event_loop.synchronization import Completion, Event
    from cosync.core.event_loop.tasks import TaskHandle

from .types import DeltaTime, RawTask

_T = TypeVar("_T")
_T_co = TypeVar("_T_co", covariant=True)


@dataclass
class Command(ABC):
    """
    Base abstract class for all internal command types.

    .. note::
       These commands are part of the event loop's internal control
       mechanism. Application developers should not use or yield these commands
       directly.
    """

    pass


@dataclass
class SpawnCommand(Generic[_T_co], Command):
    """
    Internal command to spawn a new raw task.

    :param raw_task: The raw task coroutine to be scheduled.

    .. note::
       Users should use the public :func:`spawn` primitive instead of yielding
       a SpawnCommand directly.
    """

    raw_task: RawTask[Command, Any, _T_co]


@dataclass
class JoinCommand(Generic[_T], Command):
    """
    Internal command to suspend a task until another task finishes.

    :param task_handle: A handle to the task to join.

    .. note::
       This is used internally to implement the :meth:`TaskHandle.join` awaitable.
    """

    task_handle: "TaskHandle[_T]"


@dataclass
class CancelCommand(Generic[_T], Command):
    """
    Internal command to wait for a cancelled task and collect its result.

    :param task_handle: A handle to the task being cancelled.

    .. note::
       This is used internally to implement the awaitable :meth:`TaskHandle.cancel`
       method. Unlike a join, a task that lets TaskCancelled propagate resolves
       to None instead of raising.
    """

    task_handle: "TaskHandle[_T]"


@dataclass
class SleepCommand(Command):
    """
    Internal command to suspend a task until a specified time.

    :param end_time: The time (as a DeltaTime) until which the task should sleep.

    .. note::
       Users should use the public :func:`sleep` primitive rather than yielding
       a SleepCommand.
    """

    end_time: DeltaTime


@dataclass
class ExitCommand(Command):
    """
    Internal command to forcibly terminate the event loop.

    :param return_value: Optional value to return from run_until_complete (when join=True).
    :param exception: Optional exception to raise from run_until_complete.

    .. note::
       This command causes the event loop to terminate immediately, regardless of
       any remaining tasks. Similar to sys.exit() but specific to the event loop.
    """

    return_value: object = None
    exception: Exception | None = None


@dataclass
class EventWaitCommand(Command):
    """
    Block until an event is set.

    :param event: The Event synchronization primitive to wait on.

    .. note::
       If the event is already set when this command is handled, the task
       resumes immediately. Otherwise the loop registers a waiter with the
       event, which reschedules it when :meth:`Event.set` is called.
    """

    event: "Event"


@dataclass
class CompletionWaitCommand(Command):
    """
    Block until the first of one or more completion handles settles.

    :param completions: The handles to race. The task is resumed with the
        handle that settled first.

    .. note::
       A single registration is shared between all the raced handles, so the
       task is woken exactly once no matter how many of them settle.
    """

    completions: "tuple[Completion[Any], ...]"


__all__ = [
    "Command",
    "SpawnCommand",
    "JoinCommand",
    "CancelCommand",
    "SleepCommand",
    "ExitCommand",
    "EventWaitCommand",
    "CompletionWaitCommand",
]
