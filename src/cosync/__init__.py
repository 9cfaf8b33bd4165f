"""
cosync: coordination primitives for a single-threaded cooperative event loop.

Tasks are plain ``async def`` coroutines driven by :class:`EventLoop`. On top
of the loop, cosync provides semaphores, locks, level-triggered events, FIFO
channels with backpressure, and helpers that turn several producers or a
callback-driven source into one async iterator.
"""

from importlib.metadata import PackageNotFoundError, version

from .config import Settings, get_settings
from .core.emitter import EventEmitter
from .core.event_loop import (
    AlreadySetError,
    BaseEvent,
    BroadcastEvent,
    Channel,
    Completion,
    DeadlockError,
    DirtyClearError,
    Event,
    EventLoop,
    Lock,
    Semaphore,
    SynchronizationError,
    TaskCancelled,
    TaskHandle,
    current_event_loop,
    current_task,
    exit,
    first_completed,
    make_event,
    sleep,
    spawn,
)
from .streams import EventStreamError, batches, events_to_sequence, merge_sequences
from .utilities.logging import configure_logging, log_async

try:
    __version__ = version("cosync")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "AlreadySetError",
    "BaseEvent",
    "BroadcastEvent",
    "Channel",
    "Completion",
    "DeadlockError",
    "DirtyClearError",
    "Event",
    "EventEmitter",
    "EventLoop",
    "EventStreamError",
    "Lock",
    "Semaphore",
    "Settings",
    "SynchronizationError",
    "TaskCancelled",
    "TaskHandle",
    "batches",
    "configure_logging",
    "current_event_loop",
    "current_task",
    "events_to_sequence",
    "exit",
    "first_completed",
    "get_settings",
    "log_async",
    "make_event",
    "merge_sequences",
    "sleep",
    "spawn",
]
