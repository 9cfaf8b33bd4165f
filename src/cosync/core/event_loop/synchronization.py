"""
Synchronization primitives for the cosync event loop.

This module provides the coordination tools tasks use to wait for each other:

- :class:`Completion`: a settle-once handle, the rendezvous used by the
  other primitives and by the stream utilities.
- :class:`Semaphore` and :class:`Lock`: counting and exclusive admission.
- :class:`Event` and :class:`BroadcastEvent`: level-triggered, manually reset
  signals with the same contract and different wake mechanisms.

Waking never suspends: ``release()``, ``set()``, ``resolve()`` are plain
methods, so they can be called from emitter callbacks as well as from tasks.

Examples:
    >>> from cosync.core.event_loop.event_loop import EventLoop
    >>> from cosync.core.event_loop.primitives import spawn
    >>> from cosync.core.event_loop.synchronization import Semaphore
    >>>
    >>> async def worker(name: str, semaphore: Semaphore, log: list):
    ...     async with semaphore:
    ...         log.append(f"{name} in")
    ...         await spawn(noop())
    ...         log.append(f"{name} out")
    >>>
    >>> async def noop():
    ...     pass
    >>>
    >>> async def main():
    ...     semaphore = Semaphore(1)
    ...     log = []
    ...     first = await spawn(worker("a", semaphore, log))
    ...     second = await spawn(worker("b", semaphore, log))
    ...     await first.join()
    ...     await second.join()
    ...     return log
    >>>
    >>> EventLoop().run_until_complete(main(), join=True)
    ['a in', 'a out', 'b in', 'b out']
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Generator
from types import TracebackType, coroutine
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar, cast

from cosync.config import EVENT_STRATEGIES, get_settings
from cosync.core.emitter import EventEmitter
from cosync.core.event_loop.commands import CompletionWaitCommand, EventWaitCommand
from cosync.core.event_loop.instrumentation import get_current_instrument

if TYPE_CHECKING:
    from cosync.core.event_loop.tasks import Waiter

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class SynchronizationError(Exception):
    """Base class for misuse of a synchronization primitive."""


class AlreadySetError(SynchronizationError):
    """Raised by ``set(assert_not_set=True)`` on an event that is already set."""


class DirtyClearError(SynchronizationError):
    """
    Raised by ``clear()`` on a set event that still has registered waiters.

    Clearing at that point would strand a waiter that was never released.
    """


class Completion(Generic[_T]):
    """
    A handle that settles exactly once, with a value or a failure.

    Any number of tasks can wait on it; they resume in registration order
    once :meth:`resolve` or :meth:`reject` is called. Settling again is a
    no-op, so a completion can be handed to several producers and the first
    one wins.

    Examples:
        >>> from cosync.core.event_loop.event_loop import EventLoop
        >>> from cosync.core.event_loop.primitives import spawn
        >>>
        >>> async def main():
        ...     done = Completion()
        ...
        ...     async def producer():
        ...         done.resolve("ready")
        ...         done.resolve("ignored")
        ...
        ...     await spawn(producer())
        ...     return await done.wait()
        >>>
        >>> EventLoop().run_until_complete(main(), join=True)
        'ready'
    """

    def __init__(self) -> None:
        self._done = False
        self._value: _T | None = None
        self._exception: Exception | None = None
        self._waiters: deque[Waiter] = deque()

    def done(self) -> bool:
        return self._done

    def result(self) -> _T:
        """
        Return the value, or raise the failure, of a settled completion.

        Raises:
            RuntimeError: If the completion is still pending.
        """
        if not self._done:
            raise RuntimeError("Completion is still pending")
        if self._exception is not None:
            raise self._exception
        return cast(_T, self._value)

    def exception(self) -> Exception | None:
        """The failure this completion was rejected with, if any."""
        return self._exception

    def resolve(self, value: _T | None = None) -> None:
        """Settle with ``value`` and wake every waiter. Ignored once settled."""
        if self._done:
            return
        self._done = True
        self._value = value
        self._wake_all()

    def reject(self, exception: Exception) -> None:
        """Settle with a failure that :meth:`wait` will raise. Ignored once settled."""
        if self._done:
            return
        self._done = True
        self._exception = exception
        self._wake_all()

    def _wake_all(self) -> None:
        waiters, self._waiters = self._waiters, deque()
        for waiter in waiters:
            waiter.loop.wake(waiter, self)

    def _add_waiter(self, waiter: Waiter) -> None:
        # handles left behind by first_completed() races that another
        # completion already won
        while self._waiters and not self._waiters[0].active:
            self._waiters.popleft()
        self._waiters.append(waiter)

    @coroutine
    def _wait(self) -> Generator[CompletionWaitCommand, object, None]:
        yield CompletionWaitCommand(completions=(self,))

    async def wait(self) -> _T:
        """
        Suspend until settled.

        Returns:
            The value passed to :meth:`resolve`.

        Raises:
            Exception: The failure passed to :meth:`reject`.
        """
        if not self._done:
            await self._wait()
        return self.result()

    def __repr__(self) -> str:
        if not self._done:
            state = "pending"
        elif self._exception is not None:
            state = f"rejected {self._exception!r}"
        else:
            state = f"resolved {self._value!r}"
        return f"Completion({state})"


@coroutine
def first_completed(*completions: Completion[Any]) -> Generator[CompletionWaitCommand, object, Completion[Any]]:
    """
    Wait until any of ``completions`` settles and return that completion.

    If several are already settled, the first in argument order wins. The
    winner's failure is not raised here; call ``result()`` on it.

    Raises:
        ValueError: If called without completions.
    """
    if not completions:
        raise ValueError("first_completed() needs at least one completion")
    for completion in completions:
        if completion.done():
            return completion
    winner = yield CompletionWaitCommand(completions=tuple(completions))
    return cast(Completion[Any], winner)


class Semaphore:
    """
    A counting admission gate.

    At most ``value`` tasks hold the semaphore at once. Blocked acquirers
    share a single pending wake handle; every ``release()`` fires it, and all
    of them resume in the order they blocked and re-check the count. Those
    that find no free slot block again on a fresh handle. The result is
    approximately FIFO: a task that was never blocked can still take a
    freshly released slot before the woken ones get to run.

    Args:
        value: The number of slots. Must be non-negative.

    Raises:
        ValueError: If ``value`` is negative.
    """

    def __init__(self, value: int = 1) -> None:
        if value < 0:
            raise ValueError("Semaphore initial value must be non-negative")
        self._count = value
        self._wake: Completion[None] | None = None

    @property
    def count(self) -> int:
        """The number of free slots."""
        return self._count

    def locked(self) -> bool:
        """True when an acquire would block."""
        return self._count == 0

    async def acquire(self) -> int:
        """
        Take a slot, suspending while none is free.

        Returns:
            The number of slots left after this acquisition.
        """
        while self._count == 0:
            if self._wake is None:
                self._wake = Completion()
            await self._wake.wait()
        self._count -= 1
        get_current_instrument().on_semaphore_acquire(self, self._count)
        return self._count

    def release(self) -> None:
        """
        Return a slot and wake every blocked acquirer to re-check.

        Releasing without a matching acquire raises the capacity.
        """
        self._count += 1
        wake, self._wake = self._wake, None
        get_current_instrument().on_semaphore_release(self, self._count)
        if wake is not None:
            wake.resolve()

    async def with_slot(self, operation: Callable[[], Awaitable[_T]]) -> _T:
        """
        Run ``operation()`` while holding a slot.

        The slot is released however the operation ends.

        Args:
            operation: A zero-argument callable returning an awaitable.

        Returns:
            The operation's result.
        """
        await self.acquire()
        try:
            return await operation()
        finally:
            self.release()

    async def __aenter__(self) -> Semaphore:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"Semaphore(count={self._count})"


class Lock(Semaphore):
    """
    A semaphore with a single slot.

    The lock is not reentrant: a holder that acquires it again blocks
    forever, which the event loop reports as a
    :class:`~cosync.core.event_loop.event_loop.DeadlockError`.

    Examples:
        >>> from cosync.core.event_loop.event_loop import EventLoop
        >>> from cosync.core.event_loop.primitives import spawn
        >>>
        >>> async def critical_section(name: str, lock: Lock, log: list):
        ...     async with lock:
        ...         log.append(f"{name} enter")
        ...         await spawn(critical_section_helper())
        ...         log.append(f"{name} exit")
        >>>
        >>> async def critical_section_helper():
        ...     pass
        >>>
        >>> async def main():
        ...     lock = Lock()
        ...     log = []
        ...     t1 = await spawn(critical_section("t1", lock, log))
        ...     t2 = await spawn(critical_section("t2", lock, log))
        ...     await t1.join()
        ...     await t2.join()
        ...     return log
        >>>
        >>> EventLoop().run_until_complete(main(), join=True)
        ['t1 enter', 't1 exit', 't2 enter', 't2 exit']
    """

    def __init__(self) -> None:
        super().__init__(1)

    def is_locked(self) -> bool:
        return self.locked()

    def __repr__(self) -> str:
        return f"Lock({'locked' if self.locked() else 'unlocked'})"


class BaseEvent(ABC):
    """
    Level-triggered, manually reset signal.

    Every task waiting when :meth:`set` is called resumes exactly once, in
    the order it started waiting. While the event stays set, :meth:`wait`
    returns without suspending. :meth:`set` removes the waiters it wakes
    from the registry, so ``set(); clear()`` pulses the event: every waiter
    present at that moment still resumes once.
    """

    def __init__(self) -> None:
        self._set = False

    def is_set(self) -> bool:
        return self._set

    @abstractmethod
    def has_waiters(self) -> bool:
        """True while some task is registered and has not been woken yet."""

    @abstractmethod
    async def wait(self) -> None:
        """Suspend until the event is set. Returns immediately if it already is."""

    @abstractmethod
    def _wake_waiters(self) -> int:
        """Release every registered waiter and return how many were woken."""

    def set(self, assert_not_set: bool = False) -> None:
        """
        Set the event, waking all waiting tasks.

        Args:
            assert_not_set: Fail instead of setting an event that is already set.

        Raises:
            AlreadySetError: If ``assert_not_set`` is true and the event is set.
        """
        if self._set and assert_not_set:
            raise AlreadySetError(f"{self!r} is already set")
        self._set = True
        woken = self._wake_waiters()
        logger.debug(f"{self!r} woke {woken} waiter(s)")
        get_current_instrument().on_event_set(self, woken)

    def clear(self) -> None:
        """
        Reset the event so that later waits suspend again.

        Does nothing if the event is not set.

        Raises:
            DirtyClearError: If the event is set while waiters are still
                registered.
        """
        if not self._set:
            return
        if self.has_waiters():
            raise DirtyClearError(f"Cannot clear {self!r}: waiters are still registered")
        self._set = False

    def __repr__(self) -> str:
        state = "set" if self._set else "not set"
        return f"{type(self).__name__}({state})"


class Event(BaseEvent):
    """
    Event backed by an explicit, ordered registry of blocked tasks.

    Examples:
        >>> from cosync.core.event_loop.event_loop import EventLoop
        >>> from cosync.core.event_loop.primitives import spawn
        >>>
        >>> async def waiter(name: str, event: Event):
        ...     print(f"{name}: Waiting...")
        ...     await event.wait()
        ...     print(f"{name}: Event set, proceeding!")
        >>>
        >>> async def main():
        ...     event = Event()
        ...     w1 = await spawn(waiter("Waiter1", event))
        ...     w2 = await spawn(waiter("Waiter2", event))
        ...     print("Setting event")
        ...     event.set()
        ...     await w1.join()
        ...     await w2.join()
        >>>
        >>> EventLoop().run_until_complete(main(), join=True)
        Waiter1: Waiting...
        Waiter2: Waiting...
        Setting event
        Waiter1: Event set, proceeding!
        Waiter2: Event set, proceeding!
    """

    def __init__(self) -> None:
        super().__init__()
        self._waiters: deque[Waiter] = deque()

    def has_waiters(self) -> bool:
        return any(waiter.active for waiter in self._waiters)

    def _add_waiter(self, waiter: Waiter) -> None:
        # cancelled waiters stay in the registry until they reach the head
        while self._waiters and not self._waiters[0].active:
            self._waiters.popleft()
        self._waiters.append(waiter)

    def _wake_waiters(self) -> int:
        waiters, self._waiters = self._waiters, deque()
        return sum(1 for waiter in waiters if waiter.loop.wake(waiter))

    @coroutine
    def _wait_impl(self) -> Generator[EventWaitCommand, None, None]:
        yield EventWaitCommand(event=self)

    async def wait(self) -> None:
        if self._set:
            return
        await self._wait_impl()


class BroadcastEvent(BaseEvent):
    """
    Event backed by a publish/subscribe emitter.

    Each :meth:`wait` subscribes a fresh one-shot listener that resolves a
    :class:`Completion`; :meth:`set` publishes once to all of them. The
    emitter has no listener limit, so any number of tasks can wait.
    """

    def __init__(self) -> None:
        super().__init__()
        self._emitter = EventEmitter(max_listeners=0)

    def has_waiters(self) -> bool:
        # emit() drops one-shot listeners before calling them
        return self._emitter.listener_count("set") > 0

    def _wake_waiters(self) -> int:
        woken = self._emitter.listener_count("set")
        self._emitter.emit("set")
        return woken

    async def wait(self) -> None:
        if self._set:
            return
        signal: Completion[None] = Completion()
        self._emitter.once("set", signal.resolve)
        try:
            await signal.wait()
        finally:
            self._emitter.off("set", signal.resolve)


def make_event(strategy: str | None = None) -> BaseEvent:
    """
    Build an event with the requested wake strategy.

    Args:
        strategy: ``"waiters"`` for :class:`Event`, ``"broadcast"`` for
            :class:`BroadcastEvent`, or None for the configured default
            (``COSYNC_EVENT_STRATEGY``).

    Raises:
        ValueError: For an unknown strategy.
    """
    strategy = get_settings().event_strategy if strategy is None else strategy
    if strategy == "waiters":
        return Event()
    if strategy == "broadcast":
        return BroadcastEvent()
    raise ValueError(f"Unknown event strategy {strategy!r}, expected one of {', '.join(EVENT_STRATEGIES)}")


__all__ = [
    "AlreadySetError",
    "BaseEvent",
    "BroadcastEvent",
    "Completion",
    "DirtyClearError",
    "Event",
    "Lock",
    "Semaphore",
    "SynchronizationError",
    "first_completed",
    "make_event",
]
