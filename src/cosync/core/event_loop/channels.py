"""
Producer/consumer channels for the cosync event loop.

A :class:`Channel` is a FIFO queue built from two primitives it owns
exclusively: a :class:`~cosync.core.event_loop.synchronization.Semaphore` that
bounds the number of queued items (backpressure), and an event that signals
"not empty" to consumers.

Examples:
    Bounded channel with a slow consumer:

    >>> from cosync.core.event_loop.event_loop import EventLoop
    >>> from cosync.core.event_loop.primitives import spawn
    >>> from cosync.core.event_loop.channels import Channel
    >>>
    >>> async def producer(channel: Channel[int]):
    ...     for i in range(4):
    ...         await channel.push(i)
    ...     channel.drain = True
    >>>
    >>> async def main():
    ...     channel = Channel[int](capacity=2)
    ...     await spawn(producer(channel))
    ...     return [item async for item in channel.consume_items()]
    >>>
    >>> EventLoop().run_until_complete(main(), join=True)
    [0, 1, 2, 3]
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

from typing_extensions import override

from cosync.core.event_loop.instrumentation import get_current_instrument
from cosync.core.event_loop.synchronization import BaseEvent, Semaphore, make_event
from cosync.utilities.logging import log_async

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class Channel(Generic[_T]):
    """
    A FIFO channel between tasks.

    Args:
        capacity: Maximum number of queued items. ``None`` or a value ``<= 0``
            makes the channel unbounded.
        event_strategy: Wake strategy for the internal "not empty" event, see
            :func:`~cosync.core.event_loop.synchronization.make_event`.

    Attributes:
        drain: Set by producers to announce that no more items will be
            pushed. :meth:`consume_items` stops once it is set and the queue
            is empty.

    Note:
        Setting ``drain`` does not wake a consumer that is already suspended
        in :meth:`consume` on an empty channel; that consumer stays blocked
        until something is pushed. A producer that finishes while consumers
        may be waiting should push a final sentinel item instead of relying
        on ``drain`` alone.
    """

    def __init__(self, capacity: int | None = None, event_strategy: str | None = None) -> None:
        self._capacity = capacity if capacity is not None and capacity > 0 else None
        self._items: deque[_T] = deque()
        self._slots: Semaphore | None = Semaphore(self._capacity) if self._capacity is not None else None
        self._not_empty: BaseEvent = make_event(event_strategy)
        self.drain = False

    @property
    def capacity(self) -> int | None:
        """The bound on queued items, or None when unbounded."""
        return self._capacity

    @property
    def bounded(self) -> bool:
        return self._capacity is not None

    def __len__(self) -> int:
        return len(self._items)

    @override
    def __repr__(self) -> str:
        return (
            f"<Channel capacity={self._capacity} items={len(self._items)} "
            f"drain={self.drain} event={self._not_empty!r}>"
        )

    async def push(self, item: _T) -> None:
        """
        Append an item, suspending while a bounded channel is full.

        Args:
            item: The item to enqueue.
        """
        if self._slots is not None:
            await self._slots.acquire()
        self._items.append(item)
        get_current_instrument().on_channel_push(self, item)
        logger.debug(f"Channel.push {item!r} into {self}")
        self._not_empty.set()

    @log_async
    async def consume(self) -> _T:
        """
        Remove and return the oldest item, suspending while the channel is empty.

        Returns:
            The head of the queue.
        """
        while not self._items:
            self._not_empty.clear()
            await self._not_empty.wait()

        item = self._items.popleft()
        get_current_instrument().on_channel_consume(self, item)
        logger.debug(f"Channel.consume {item!r} from {self}")
        if self._slots is not None:
            self._slots.release()
        return item

    async def consume_items(self) -> AsyncIterator[_T]:
        """
        Yield items as they are consumed until the channel is drained.

        Each call returns an independent iterator over the same queue.
        """
        while not self.drain or self._items:
            yield await self.consume()


__all__ = [
    "Channel",
]
