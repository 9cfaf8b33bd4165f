"""
A small synchronous publish/subscribe emitter.

:class:`EventEmitter` is the callback-driven side of the toolkit: it is what
:func:`~cosync.streams.events.events_to_sequence` subscribes to, and what
:class:`~cosync.core.event_loop.synchronization.BroadcastEvent` uses to fan a
single ``set()`` out to every waiter.

Listeners run synchronously, in registration order, inside :meth:`emit`. They
must not await; to hand work to a task, resolve a
:class:`~cosync.core.event_loop.synchronization.Completion` or push to a
channel from the listener.

Examples:
    >>> emitter = EventEmitter()
    >>> seen = []
    >>> emitter.on("data", lambda *args: seen.append(args))
    >>> emitter.once("data", lambda *args: seen.append(("once",) + args))
    >>> emitter.emit("data", 1)
    True
    >>> emitter.emit("data", 2)
    True
    >>> seen
    [(1,), ('once', 1), (2,)]
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]

DEFAULT_MAX_LISTENERS = 10


@dataclass(eq=False)
class _Subscription:
    listener: Listener
    once: bool


class EventEmitter:
    """
    Named-event publish/subscribe hub.

    Args:
        max_listeners: Number of listeners per event name above which a
            possible-leak warning is logged (once per name). ``0`` disables
            the limit.
    """

    def __init__(self, max_listeners: int = DEFAULT_MAX_LISTENERS) -> None:
        if max_listeners < 0:
            raise ValueError("max_listeners must be non-negative")
        self.max_listeners = max_listeners
        self._subscriptions: defaultdict[str, list[_Subscription]] = defaultdict(list)
        self._warned: set[str] = set()

    def _subscribe(self, name: str, listener: Listener, once: bool) -> None:
        subscriptions = self._subscriptions[name]
        subscriptions.append(_Subscription(listener, once))
        if (
            self.max_listeners
            and len(subscriptions) > self.max_listeners
            and name not in self._warned
        ):
            self._warned.add(name)
            logger.warning(
                f"Possible listener leak on {self!r}: {len(subscriptions)} listeners for {name!r} "
                f"(max_listeners={self.max_listeners})"
            )

    def on(self, name: str, listener: Listener) -> None:
        """Call ``listener(*args)`` every time ``name`` is emitted."""
        self._subscribe(name, listener, once=False)

    def once(self, name: str, listener: Listener) -> None:
        """Call ``listener(*args)`` the next time ``name`` is emitted, then forget it."""
        self._subscribe(name, listener, once=True)

    def off(self, name: str, listener: Listener) -> bool:
        """
        Remove the most recently added registration of ``listener``.

        Returns:
            True if a registration was removed.
        """
        subscriptions = self._subscriptions.get(name)
        if not subscriptions:
            return False
        for index in range(len(subscriptions) - 1, -1, -1):
            if subscriptions[index].listener == listener:
                del subscriptions[index]
                if not subscriptions:
                    del self._subscriptions[name]
                return True
        return False

    def emit(self, name: str, *args: Any) -> bool:
        """
        Call every listener of ``name`` with ``args``.

        Listeners registered while emitting are not called for this emission.
        An exception raised by a listener propagates to the caller and the
        remaining listeners are skipped.

        Returns:
            True if the event had listeners.
        """
        subscriptions = self._subscriptions.get(name)
        if not subscriptions:
            return False
        snapshot = list(subscriptions)
        logger.debug(f"emit {name!r} to {len(snapshot)} listener(s)")
        for subscription in snapshot:
            if subscription.once:
                self._discard(name, subscription)
            subscription.listener(*args)
        return True

    def _discard(self, name: str, subscription: _Subscription) -> None:
        subscriptions = self._subscriptions.get(name)
        if subscriptions and subscription in subscriptions:
            subscriptions.remove(subscription)
            if not subscriptions:
                del self._subscriptions[name]

    def listeners(self, name: str) -> list[Listener]:
        """Listeners of ``name`` in call order."""
        return [subscription.listener for subscription in self._subscriptions.get(name, ())]

    def listener_count(self, name: str) -> int:
        return len(self._subscriptions.get(name, ()))

    def remove_all_listeners(self, name: str | None = None) -> None:
        """Forget the listeners of ``name``, or of every event if ``name`` is None."""
        if name is None:
            self._subscriptions.clear()
            self._warned.clear()
        else:
            self._subscriptions.pop(name, None)
            self._warned.discard(name)

    def __repr__(self) -> str:
        return f"<EventEmitter events={sorted(self._subscriptions)}>"


__all__ = [
    "DEFAULT_MAX_LISTENERS",
    "EventEmitter",
    "Listener",
]
