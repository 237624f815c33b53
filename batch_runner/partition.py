"""Split ordered sequences into fixed-size slices.

Both helpers iterate their source exactly once, never yield an empty slice,
and yield nothing when ``size`` is not positive or the source is None.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from itertools import islice
from typing import List, Optional, TypeVar

from batch_runner.cancellation import CancellationToken

T = TypeVar("T")


def partition(items: Optional[Iterable[T]], size: int) -> Iterator[List[T]]:
    """Lazily split ``items`` into lists of ``size`` elements.

    The last slice may be shorter.

    Args:
        items: Source iterable (consumed once)
        size: Slice length

    Yields:
        Consecutive, non-empty slices in source order

    """
    if items is None or size <= 0:
        return

    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


async def apartition(
    items: Optional[AsyncIterable[T]],
    size: int,
    token: Optional[CancellationToken] = None,
) -> AsyncIterator[List[T]]:
    """Async counterpart of ``partition`` for asynchronous sources.

    The token is checked before each slice is assembled.

    Raises:
        OperationCancelledError: If ``token`` fires while partitioning

    """
    if items is None or size <= 0:
        return

    chunk: List[T] = []
    if token is not None:
        token.raise_if_cancelled()
    async for item in items:
        chunk.append(item)
        if len(chunk) == size:
            yield chunk
            chunk = []
            if token is not None:
                token.raise_if_cancelled()
    if chunk:
        yield chunk
