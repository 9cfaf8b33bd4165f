"""Group an async iterator into fixed-size lists."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Callable, TypeVar

_T = TypeVar("_T")


async def batches(
    size: int,
    source: AsyncIterable[_T],
    predicate: Callable[[_T], bool] | None = None,
    transform: Callable[[_T], Any] | None = None,
) -> AsyncIterator[list[Any]]:
    """
    Collect items from ``source`` into lists of ``size``.

    Items rejected by ``predicate`` are skipped, kept items are passed through
    ``transform``. A final, shorter batch is yielded if anything is left over.

    Raises:
        ValueError: If ``size`` is less than 1 (on the first pull).

    Examples:
        >>> from cosync.core.event_loop.event_loop import EventLoop
        >>>
        >>> async def numbers():
        ...     for i in range(1, 8):
        ...         yield i
        >>>
        >>> async def main():
        ...     odd = batches(2, numbers(), predicate=lambda i: i % 2, transform=str)
        ...     return [batch async for batch in odd]
        >>>
        >>> EventLoop().run_until_complete(main(), join=True)
        [['1', '3'], ['5', '7']]
    """
    if size < 1:
        raise ValueError(f"batch size must be at least 1, got {size}")
    batch: list[Any] = []
    async for item in source:
        if predicate is not None and not predicate(item):
            continue
        batch.append(transform(item) if transform is not None else item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


__all__ = [
    "batches",
]
