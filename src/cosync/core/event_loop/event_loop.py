"""
Custom event loop implementation for cosync's cooperative execution model.

This module provides a lightweight, single-threaded cooperative multitasking
event loop that handles:
- Task scheduling and management
- Sleeping/timing operations
- Blocking on synchronization primitives (events, completion handles)
- Task joining and cancellation

The EventLoop class implements a command-based coroutine system similar to
Python's asyncio: tasks yield :mod:`~cosync.core.event_loop.commands` and the
loop decides when each task resumes. Every "blocking" operation is a suspension
point; nothing ever blocks the thread except waiting for the next sleeper.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import signal
import time
from collections import defaultdict, deque
from contextvars import ContextVar
from timeit import default_timer as timer
from typing import Any, Literal, TypeVar, cast

from typing_extensions import overload

from cosync.config import get_settings
from cosync.core.event_loop.commands import (
    CancelCommand,
    Command,
    CompletionWaitCommand,
    EventWaitCommand,
    ExitCommand,
    JoinCommand,
    SleepCommand,
    SpawnCommand,
)
from cosync.core.event_loop.instrumentation import (
    TaskSendMetadata,
    TaskThrowMetadata,
    get_current_instrument,
)
from cosync.core.event_loop.tasks import TaskCancelled, TaskHandle, Waiter
from cosync.core.event_loop.types import (
    DeltaTime,
    RawTask,
    RawTaskPacket,
    TaskHandlePacket,
    Time,
)

logger = logging.getLogger(__name__)

_ReturnT = TypeVar("_ReturnT")

_current_task: ContextVar[RawTask[Command, Any, Any] | None] = ContextVar("_current_task", default=None)
_current_event_loop: ContextVar["EventLoop | None"] = ContextVar("_current_event_loop", default=None)


def current_task() -> RawTask[Command, Any, Any] | None:
    """
    Get the currently executing task in the event loop.

    Returns:
        The currently executing task, or None if called outside a task context.
    """
    return _current_task.get()


def current_event_loop() -> "EventLoop | None":
    """
    Get the EventLoop that is currently running.

    Returns:
        The running EventLoop instance, or None outside of ``run_until_complete``.
    """
    return _current_event_loop.get()


class DeadlockError(RuntimeError):
    """
    Raised when every remaining task is blocked and nothing can wake them.

    Tasks can only be woken by other tasks in the same loop, so once the ready
    queue and the sleep heap are both empty, blocked tasks stay blocked forever.
    """

    def __init__(self, blocked: int) -> None:
        super().__init__(f"Event loop deadlocked: {blocked} task(s) blocked with nothing left to wake them")
        self.blocked = blocked


class EventLoop:
    """
    The core event loop implementation for cosync's cooperative execution model.

    Manages task scheduling, sleeping, and the wait registry used by the
    synchronization primitives.
    """

    def __init__(self) -> None:
        self.tasks: deque[RawTaskPacket[Command, Any, object, Exception]] = deque()
        self.sleeping: list[tuple[Time, int, RawTask[Command, Any, Any]]] = []
        self._sleep_sequence = itertools.count()
        # joined task -> [(watcher, watcher is cancelling)]
        self.watching_task: defaultdict[
            RawTask[Command, object, object], list[tuple[RawTask[Command, object, object], bool]]
        ] = defaultdict(list)
        # Tasks suspended on synchronization primitives. The primitives hold
        # the same Waiter handles and pass them back to wake().
        self.blocked: dict[RawTask[Command, Any, Any], Waiter] = {}
        self.finished: dict[RawTask[Command, Any, Any], object] = {}
        self.exceptions: dict[RawTask[Command, Any, Any], Exception] = {}
        self.cancelled: set[RawTask[Command, Any, Any]] = set()
        self._debug_max_wait_time: float | None = None
        self._exit_requested: tuple[bool, object, Exception | None] = (
            False,
            None,
            None,
        )
        self._signal_handlers_installed = False
        self._previous_signal_handlers: dict[int, Any] = {}

    def _dump_debug_info(self, reason: str = "Signal received") -> None:
        """
        Log detailed debug information about the current state of the event loop.

        Args:
            reason: The reason for dumping debug info (e.g., "SIGINT received")
        """
        logger.warning(f"=== EVENT LOOP DEBUG INFO ({reason}) ===")
        logger.warning(f"Active tasks in queue: {len(self.tasks)}")
        logger.warning(f"Sleeping tasks: {len(self.sleeping)}")
        logger.warning(f"Tasks blocked on synchronization primitives: {len(self.blocked)}")

        if self.tasks:
            logger.warning("=== ACTIVE TASKS ===")
            for i, (task, send_value, exception) in enumerate(self.tasks):
                logger.warning(f"  Task {i}: {task}")
                if send_value is not None:
                    logger.warning(f"    Pending send value: {send_value}")
                if exception is not None:
                    logger.warning(f"    Pending exception: {exception}")

        if self.sleeping:
            logger.warning("=== SLEEPING TASKS ===")
            current_time = timer()
            for wake_time, _seq, task in sorted(self.sleeping)[:5]:
                logger.warning(f"  Task: {task}, wakes in {wake_time - current_time:.3f}s")
            if len(self.sleeping) > 5:
                logger.warning(f"  ... and {len(self.sleeping) - 5} more sleeping tasks")

        if self.blocked:
            logger.warning("=== BLOCKED TASKS ===")
            for task in list(self.blocked)[:5]:
                logger.warning(f"  Task: {task}")
            if len(self.blocked) > 5:
                logger.warning(f"  ... and {len(self.blocked) - 5} more blocked tasks")

        watching_count = sum(len(watchers) for watchers in self.watching_task.values())
        if watching_count > 0:
            logger.warning(f"=== TASK WATCHING ({watching_count} relationships) ===")
            for watched_task, watchers in list(self.watching_task.items())[:5]:
                logger.warning(f"  {watched_task} watched by {len(watchers)} tasks")

        logger.warning(f"Finished tasks: {len(self.finished)}")
        logger.warning(f"Tasks with exceptions: {len(self.exceptions)}")
        logger.warning(f"Cancelled tasks: {len(self.cancelled)}")
        logger.warning("=== END DEBUG INFO ===")

    def _install_signal_handlers(self) -> None:
        """Install signal handlers that dump the loop state, if configured."""
        if self._signal_handlers_installed or not get_settings().debug_signals:
            return

        def signal_handler(signum: int, frame: Any) -> None:
            sig_name = signal.Signals(signum).name
            self._dump_debug_info(f"Signal {sig_name} received")
            if signum == signal.SIGINT:
                raise KeyboardInterrupt()

        signals = [signal.SIGINT, signal.SIGTERM]
        if hasattr(signal, "SIGUSR1"):
            signals.append(signal.SIGUSR1)
        try:
            for signum in signals:
                self._previous_signal_handlers[signum] = signal.signal(signum, signal_handler)
            self._signal_handlers_installed = True
            logger.debug("Signal handlers installed for event loop debugging")
        except (OSError, ValueError) as e:
            # signal.signal only works from the main thread
            logger.debug(f"Could not install signal handlers: {e}")

    def _uninstall_signal_handlers(self) -> None:
        """Restore the signal handlers that were active before the loop ran."""
        if not self._signal_handlers_installed:
            return
        try:
            for signum, handler in self._previous_signal_handlers.items():
                signal.signal(signum, handler)
            self._previous_signal_handlers.clear()
            self._signal_handlers_installed = False
            logger.debug("Signal handlers uninstalled")
        except (OSError, ValueError) as e:
            logger.debug(f"Could not uninstall signal handlers: {e}")

    def has_living_tasks(self) -> bool:
        """Return True if there are any tasks still needing processing."""
        if self.tasks or self.sleeping or self.blocked:
            return True
        return any(self.watching_task.values())

    def create_task(
        self,
        raw_task: RawTask[Command, Any, Any],
    ) -> TaskHandle[Any]:
        """
        Create a new task handle for the given raw task and enqueue
        the task in the event loop's task queue.

        Args:
            raw_task: The raw task to create a handle for.

        Returns:
            A TaskHandle object representing the created task.
        """
        self.tasks.append((raw_task, None, None))
        return TaskHandle(self, raw_task)

    def block(self, raw_task: RawTask[Command, Any, Any]) -> Waiter:
        """
        Suspend a task and return its wait registry handle.

        The caller hands the returned :class:`Waiter` to whichever primitive
        will later pass it to :meth:`wake`.
        """
        waiter = Waiter(self, raw_task)
        self.blocked[raw_task] = waiter
        return waiter

    def wake(self, waiter: Waiter, value: object = None, exception: Exception | None = None) -> bool:
        """
        Reschedule a blocked task.

        Args:
            waiter: The handle returned by :meth:`block`.
            value: The value the task's suspended ``yield`` evaluates to.
            exception: If given, thrown into the task instead.

        Returns:
            True if the task was rescheduled, False if the handle had already
            been woken or the task was cancelled in the meantime.
        """
        if not waiter.active:
            return False
        waiter.active = False
        self.blocked.pop(waiter.task, None)
        self.tasks.append((waiter.task, value, exception))
        return True

    def _on_task_before_send(
        self, task: RawTask[Command, Any, Any], value: Any
    ) -> None:
        """
        Hook called before sending a value to a task.

        Subclasses can override this method to add custom behavior.
        The default implementation delegates to the current instrumentation.
        """
        get_current_instrument().on_task_before_send(TaskSendMetadata(task=task, send_value=value))

    def _on_task_after_send(
        self, task: RawTask[Command, Any, Any], value: Any, command: Command
    ) -> None:
        """Hook called after successfully sending a value to a task."""
        get_current_instrument().on_task_after_send(TaskSendMetadata(task=task, send_value=value), command)

    def _on_task_before_throw(
        self, task: RawTask[Command, Any, Any], exception: Exception
    ) -> None:
        """Hook called before throwing an exception into a task."""
        get_current_instrument().on_task_before_throw(TaskThrowMetadata(task=task, exception=exception))

    def _on_task_after_throw(
        self, task: RawTask[Command, Any, Any], exception: Exception, command: Command
    ) -> None:
        """Hook called after successfully throwing an exception into a task."""
        get_current_instrument().on_task_after_throw(TaskThrowMetadata(task=task, exception=exception), command)

    def _on_task_completed(
        self, task: RawTask[Command, Any, Any], result: Any
    ) -> None:
        """Hook called when a task completes successfully."""
        get_current_instrument().on_task_completed(task, result)

    def _on_task_error(
        self, task: RawTask[Command, Any, Any], exception: Exception
    ) -> None:
        """Hook called when a task raises an exception."""
        get_current_instrument().on_task_error(task, exception)

    def _on_task_cancelled(
        self, task: RawTask[Command, Any, Any], exception: Exception
    ) -> None:
        """Hook called when a task is cancelled."""
        get_current_instrument().on_task_cancelled(task, exception)

    def _resume_watchers(
        self,
        raw_task: RawTask[Command, Any, Any],
        value: object = None,
        exception: Exception | None = None,
    ) -> None:
        for watcher, cancelling in self.watching_task.pop(raw_task, []):
            if cancelling and isinstance(exception, TaskCancelled):
                self.tasks.append((watcher, None, None))
            else:
                self.tasks.append((watcher, value, exception))

    def _handle_command(
        self,
        current_task_packet: TaskHandlePacket[Command, Any, Any, Exception],
        command: Command,
    ) -> bool:
        """
        Handle the command yielded by the current task.

        Returns True if the command was successfully handled.
        """
        task = current_task_packet[0]

        if isinstance(command, SpawnCommand):
            command = cast(SpawnCommand[object], command)
            new_task = TaskHandle[object](self, command.raw_task)
            self.tasks.append((command.raw_task, None, None))
            self.tasks.append((task, new_task, None))

        elif isinstance(command, (JoinCommand, CancelCommand)):
            command = cast(JoinCommand[object], command)
            cancelling = isinstance(command, CancelCommand)
            handle = command.task_handle

            if handle.is_finished:
                self.tasks.append((task, self.finished[handle.raw_task], None))
            elif handle.is_cancelled and cancelling:
                self.tasks.append((task, None, None))
            elif handle.is_error or handle.is_cancelled:
                self.tasks.append((task, None, self.exceptions[handle.raw_task]))
            else:
                # wait for the joined task to finish
                self.watching_task[handle.raw_task].append((task, cancelling))

        elif isinstance(command, SleepCommand):
            if command.end_time <= timer():
                self.tasks.append((task, None, None))
            else:
                heapq.heappush(self.sleeping, (command.end_time, next(self._sleep_sequence), task))

        elif isinstance(command, ExitCommand):
            # Mark the task as finished regardless of whether we're exiting normally or with an exception
            self.finished[task] = command.return_value
            if command.exception is not None:
                raise command.exception
            self._exit_requested = (True, command.return_value, None)

        elif isinstance(command, EventWaitCommand):
            if command.event.is_set():
                self.tasks.append((task, None, None))
            else:
                command.event._add_waiter(self.block(task))

        elif isinstance(command, CompletionWaitCommand):
            for completion in command.completions:
                if completion.done():
                    self.tasks.append((task, completion, None))
                    break
            else:
                waiter = self.block(task)
                for completion in command.completions:
                    completion._add_waiter(waiter)

        else:
            return False
        return True

    def _detach(self, raw_task: RawTask[Command, Any, Any]) -> None:
        """Remove every pending resumption of a task before it is cancelled."""
        waiter = self.blocked.pop(raw_task, None)
        if waiter is not None:
            waiter.active = False

        remaining = [entry for entry in self.sleeping if entry[2] is not raw_task]
        if len(remaining) != len(self.sleeping):
            heapq.heapify(remaining)
            self.sleeping = remaining

        if any(packet[0] is raw_task for packet in self.tasks):
            self.tasks = deque(packet for packet in self.tasks if packet[0] is not raw_task)

        for watchers in self.watching_task.values():
            watchers[:] = [entry for entry in watchers if entry[0] is not raw_task]

    def cancel(self, raw_task: RawTask[Command, Any, Any]) -> bool:
        """
        Cancel a task.

        The task is detached from whatever it is suspended on and TaskCancelled
        is thrown into it on its next turn.

        Args:
            raw_task: The task to cancel.

        Returns:
            True if cancellation was scheduled; False if the task had already finished or errored.
        """
        if raw_task in self.finished or raw_task in self.exceptions:
            return False
        self._detach(raw_task)
        self.tasks.append((raw_task, None, TaskCancelled(TaskHandle(self, raw_task))))
        return True

    @overload
    def run_until_complete(
        self,
        root_task: RawTask[Command, Any, _ReturnT],
        join: Literal[False] = False,
        wait_for_spawned_tasks: bool = True,
        _debug_max_wait_time: float | None = None,
    ) -> None: ...

    @overload
    def run_until_complete(
        self,
        root_task: RawTask[Command, Any, _ReturnT],
        join: bool = False,
        wait_for_spawned_tasks: bool = True,
        _debug_max_wait_time: float | None = None,
    ) -> _ReturnT: ...

    def run_until_complete(
        self,
        root_task: RawTask[Command, Any, _ReturnT],
        join: bool = False,
        wait_for_spawned_tasks: bool = True,
        _debug_max_wait_time: float | None = None,
    ) -> _ReturnT | None:
        """
        Run the event loop until the given root task is complete.

        Args:
            root_task: The coroutine task to execute as the root of the execution.
            join: When True, returns the result value of the root task. When False,
                returns None regardless of the task's result. If the task raises an
                exception and join=True, the exception is re-raised.
            wait_for_spawned_tasks: When True, continue running the event loop until all
                tasks spawned by the root task have completed. When False,
                stop as soon as the root task completes.
            _debug_max_wait_time: Optional upper bound, in seconds, on any single
                wait for a sleeping task. Used for debugging.

        Returns:
            If join=True, returns the result of the root task. Otherwise None.

        Raises:
            DeadlockError: If the root task is blocked and nothing can wake it.
            RuntimeError: If the event loop exits without completing the root task
                when join=True.
            Exception: Any exception raised by the root task is propagated if join=True.
        """
        self._install_signal_handlers()
        try:
            return self._run_event_loop_core(
                root_task,
                join=join,
                wait_for_spawned_tasks=wait_for_spawned_tasks,
                _debug_max_wait_time=_debug_max_wait_time,
            )
        finally:
            self._uninstall_signal_handlers()

    def _wait_for_sleepers(self, root_task: RawTask[Command, Any, Any]) -> bool:
        """
        Idle until the next sleeper is due when nothing is runnable.

        Returns False when the loop should stop because only blocked tasks
        remain after the root task completed.
        """
        if self.sleeping:
            timeout = self.sleeping[0][0] - timer()
            if self._debug_max_wait_time is not None and timeout > self._debug_max_wait_time:
                logger.error(
                    f"Sleeping task timeout {timeout} exceeds max wait time {self._debug_max_wait_time}."
                )
                timeout = self._debug_max_wait_time
            if timeout > 0:
                time.sleep(timeout)
            return True

        if root_task in self.finished or root_task in self.exceptions:
            logger.warning(
                f"Root task completed with {len(self.blocked)} task(s) still blocked; "
                "they will never be resumed."
            )
            return False
        self._dump_debug_info("deadlock")
        raise DeadlockError(len(self.blocked) + sum(len(w) for w in self.watching_task.values()))

    def _run_event_loop_core(
        self,
        root_task: RawTask[Command, Any, _ReturnT],
        join: bool = False,
        wait_for_spawned_tasks: bool = True,
        _debug_max_wait_time: float | None = None,
    ) -> _ReturnT | None:
        loop_token = _current_event_loop.set(self)
        try:
            self._debug_max_wait_time = _debug_max_wait_time
            self._exit_requested = (False, None, None)
            self.tasks.append((root_task, None, None))

            while self.has_living_tasks():
                exit_requested, exit_value, exit_exception = self._exit_requested
                if exit_requested:
                    if exit_exception is not None:
                        raise exit_exception
                    return cast(_ReturnT, exit_value) if join else None

                if not self.tasks and not self._wait_for_sleepers(root_task):
                    break

                while self.sleeping and self.sleeping[0][0] <= timer():
                    _, _seq, sleeper = heapq.heappop(self.sleeping)
                    self.tasks.append((sleeper, None, None))

                if not self.tasks:
                    continue

                task_packet = self.tasks.popleft()
                token = _current_task.set(task_packet[0])
                try:
                    if task_packet[2] is not None:
                        self._on_task_before_throw(task_packet[0], task_packet[2])
                        command = task_packet[0].throw(task_packet[2])
                        self._on_task_after_throw(task_packet[0], task_packet[2], command)
                    else:
                        self._on_task_before_send(task_packet[0], task_packet[1])
                        command = task_packet[0].send(task_packet[1])
                        self._on_task_after_send(task_packet[0], task_packet[1], command)
                except StopIteration as e:
                    returned_value = cast(object, e.value)
                    self.finished[task_packet[0]] = returned_value
                    self._on_task_completed(task_packet[0], returned_value)
                    self._resume_watchers(task_packet[0], returned_value)
                    if task_packet[0] is root_task and not wait_for_spawned_tasks:
                        return cast(_ReturnT, returned_value) if join else None
                except TaskCancelled as e:
                    self.cancelled.add(task_packet[0])
                    self.exceptions[task_packet[0]] = e
                    self._on_task_cancelled(task_packet[0], e)
                    self._resume_watchers(task_packet[0], exception=e)
                    if task_packet[0] is root_task and not wait_for_spawned_tasks:
                        if join:
                            raise
                        return None
                except Exception as e:
                    logger.exception(f"Task {task_packet[0]} raised an exception: {e}")
                    self.exceptions[task_packet[0]] = e
                    self._on_task_error(task_packet[0], e)
                    self._resume_watchers(task_packet[0], exception=e)
                    if task_packet[0] is root_task and not wait_for_spawned_tasks:
                        if join:
                            raise
                        return None
                else:
                    if not self._handle_command(task_packet, command):
                        self.tasks.append(
                            (task_packet[0], None, TypeError(f"Unknown command yielded to the event loop: {command!r}"))
                        )
                finally:
                    _current_task.reset(token)

            if join and root_task in self.finished:
                return cast(_ReturnT, self.finished[root_task])
            elif join and root_task in self.exceptions:
                raise self.exceptions[root_task]
            elif join:
                raise RuntimeError("Event loop exited without completing the root task.")
            return None
        finally:
            _current_event_loop.reset(loop_token)


__all__ = [
    "DeadlockError",
    "EventLoop",
    "current_event_loop",
    "current_task",
]
