"""
Adapt a callback-driven event source into an async iterator.

Examples:
    >>> from cosync.core.emitter import EventEmitter
    >>> from cosync.core.event_loop.event_loop import EventLoop
    >>> from cosync.core.event_loop.primitives import sleep, spawn
    >>>
    >>> async def produce(emitter: EventEmitter):
    ...     await sleep(0)
    ...     emitter.emit("data", 1)
    ...     emitter.emit("data", 2)
    ...     emitter.emit("close")
    >>>
    >>> async def main():
    ...     emitter = EventEmitter()
    ...     await spawn(produce(emitter))
    ...     stream = events_to_sequence(emitter, ["data"], ["close"], include_exit_item=True)
    ...     return [event async for event in stream]
    >>>
    >>> EventLoop().run_until_complete(main(), join=True)
    [('data', [1]), ('data', [2]), ('close', [])]
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable
from functools import partial
from typing import Any, Callable, List, Tuple

from typing_extensions import Protocol, TypeAlias

from cosync.core.event_loop.synchronization import Completion, first_completed

logger = logging.getLogger(__name__)

EventItem: TypeAlias = Tuple[str, List[Any]]


class EventSource(Protocol):
    """Anything that registers a listener by event name, like :class:`~cosync.core.emitter.EventEmitter`."""

    def on(self, name: str, listener: Callable[..., Any]) -> Any: ...


class EventStreamError(Exception):
    """
    Raised for an error event whose first argument is not an exception.

    Attributes:
        event_name: The name of the error event.
        event_args: The arguments the event was emitted with.
    """

    def __init__(self, event_name: str, event_args: list[Any]) -> None:
        super().__init__(f"Error event {event_name!r} emitted with {event_args!r}")
        self.event_name = event_name
        self.event_args = event_args


class _EventBuffer:
    """Listener target shared by every subscription of one stream."""

    def __init__(self) -> None:
        self.items: deque[EventItem] = deque()
        self.item_wake: Completion[None] = Completion()
        self.exit: Completion[EventItem] = Completion()
        self.error: Completion[EventItem] = Completion()
        self.terminated = False

    def on_item(self, name: str, *args: Any) -> None:
        if self.terminated:
            return
        self.items.append((name, list(args)))
        wake, self.item_wake = self.item_wake, Completion()
        wake.resolve()

    def on_exit(self, name: str, *args: Any) -> None:
        if self.terminated:
            return
        self.terminated = True
        self.exit.resolve((name, list(args)))

    def on_error(self, name: str, *args: Any) -> None:
        if self.terminated:
            return
        self.terminated = True
        self.error.resolve((name, list(args)))


def _error_from(name: str, args: list[Any]) -> Exception:
    if args and isinstance(args[0], Exception):
        error = args[0]
        setattr(error, "event_name", name)
        return error
    return EventStreamError(name, args)


async def events_to_sequence(
    source: EventSource,
    item_events: Iterable[str],
    exit_events: Iterable[str] = (),
    error_events: Iterable[str] = (),
    include_exit_item: bool = False,
) -> AsyncIterator[EventItem]:
    """
    Yield ``(event_name, args)`` pairs for the item events of ``source``.

    Listeners are registered when iteration starts, so events emitted before
    the first pull are not seen. The stream ends at the first exit event
    (yielding it too when ``include_exit_item`` is true) and fails at the
    first error event. Item events buffered before the terminal event are
    always yielded first.

    Args:
        source: The object to subscribe to with ``source.on(name, listener)``.
        item_events: Names whose occurrences become items.
        exit_events: Names that end the stream.
        error_events: Names that fail the stream.
        include_exit_item: Yield the exit event as a final item.

    Raises:
        Exception: For an error event whose first argument is an exception,
            that exception, with its ``event_name`` attribute set.
        EventStreamError: For any other error event.

    Note:
        Listeners are never removed. Events emitted after the stream has
        ended are ignored but still reach the (now inert) listeners.
    """
    buffer = _EventBuffer()
    for name in item_events:
        source.on(name, partial(buffer.on_item, name))
    for name in exit_events:
        source.on(name, partial(buffer.on_exit, name))
    for name in error_events:
        source.on(name, partial(buffer.on_error, name))

    while True:
        while buffer.items:
            yield buffer.items.popleft()

        # on_item swaps in a fresh handle before resolving this one
        item_wake = buffer.item_wake
        winner = await first_completed(item_wake, buffer.exit, buffer.error)
        if winner is item_wake:
            continue

        while buffer.items:
            yield buffer.items.popleft()

        name, args = winner.result()
        if winner is buffer.exit:
            logger.debug(f"event stream ended by {name!r}")
            if include_exit_item:
                yield (name, args)
            return
        logger.debug(f"event stream failed by {name!r}")
        raise _error_from(name, args)


__all__ = [
    "EventSource",
    "EventStreamError",
    "events_to_sequence",
]
