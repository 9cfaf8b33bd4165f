from .channels import Channel
from .event_loop import DeadlockError, EventLoop, current_event_loop, current_task
from .primitives import exit, sleep, spawn
from .synchronization import (
    AlreadySetError,
    BaseEvent,
    BroadcastEvent,
    Completion,
    DirtyClearError,
    Event,
    Lock,
    Semaphore,
    SynchronizationError,
    first_completed,
    make_event,
)
from .tasks import TaskCancelled, TaskHandle

__all__ = [
    "AlreadySetError",
    "BaseEvent",
    "BroadcastEvent",
    "Channel",
    "Completion",
    "DeadlockError",
    "DirtyClearError",
    "Event",
    "EventLoop",
    "Lock",
    "Semaphore",
    "SynchronizationError",
    "TaskCancelled",
    "TaskHandle",
    "current_event_loop",
    "current_task",
    "exit",
    "first_completed",
    "make_event",
    "sleep",
    "spawn",
]
