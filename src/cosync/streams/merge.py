"""
Fan-in of concurrently running async iterators.

:func:`merge_sequences` spawns one pump task per source. Pumps append what
they produce to a shared buffer and tick a wake handle; the merged iterator
drains the buffer in arrival order and waits on the handle whenever it runs
dry.

Examples:
    >>> from cosync.core.event_loop.event_loop import EventLoop
    >>> from cosync.core.event_loop.primitives import sleep
    >>>
    >>> async def ticker(name: str, delay: float, count: int):
    ...     for i in range(count):
    ...         await sleep(delay)
    ...         yield f"{name}{i}"
    >>>
    >>> async def main():
    ...     merged = merge_sequences([ticker("a", 0.03, 2), ticker("b", 0.02, 2)])
    ...     return [item async for item in merged]
    >>>
    >>> EventLoop().run_until_complete(main(), join=True)
    ['b0', 'a0', 'b1', 'a1']
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from cosync.core.event_loop.primitives import spawn
from cosync.core.event_loop.synchronization import Completion
from cosync.core.event_loop.tasks import TaskCancelled

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass
class _MergeState(Generic[_T]):
    items: deque[_T] = field(default_factory=deque)
    wake: Completion[None] = field(default_factory=Completion)
    remaining: int = 0
    failure: Exception | None = None

    def tick(self) -> None:
        # the consumer's next wait must target the fresh handle
        wake, self.wake = self.wake, Completion()
        wake.resolve()


async def _pump(source: AsyncIterable[_T], state: _MergeState[_T]) -> None:
    try:
        async for item in source:
            state.items.append(item)
            state.tick()
    except TaskCancelled:
        raise
    except Exception as e:
        logger.debug(f"merge source {source!r} failed: {e!r}")
        if state.failure is None:
            state.failure = e
    finally:
        state.remaining -= 1
        state.tick()


async def merge_sequences(sequences: Iterable[AsyncIterable[_T]]) -> AsyncIterator[_T]:
    """
    Interleave several async iterators into one, in arrival order.

    Every source is iterated by its own task as soon as the merged iterator
    is first pulled. Items from one source keep their relative order; items
    from different sources come out in the order they were produced.

    The merged iterator ends when every source is exhausted. If a source
    fails, the items buffered so far are yielded first and then its
    exception is raised as-is.

    Warning:
        Sibling sources are not cancelled or closed when one fails, or when
        the merged iterator is abandoned. Their pump tasks keep running until
        the sources finish on their own.

    Args:
        sequences: The async iterables to merge.
    """
    state = _MergeState[_T]()
    sources = list(sequences)
    state.remaining = len(sources)
    for source in sources:
        await spawn(_pump(source, state))

    while True:
        while state.items:
            yield state.items.popleft()
        if state.failure is not None:
            raise state.failure
        if state.remaining == 0:
            return
        await state.wake.wait()


__all__ = [
    "merge_sequences",
]
