"""Partition-and-fan-out batch execution with ordered results.

Every call:

1. starts one ``DeadlineArbiter`` shared by all batches (the deadline is for
   the whole call, not per batch),
2. partitions the input into slices,
3. launches one task per slice before awaiting any of them,
4. awaits the tasks in slice order and surfaces results batch by batch.

A batch that finishes late holds back its own results and every later
batch's, never earlier ones. The first failing batch in slice order ends the
call; later batches are not awaited and are left to finish or to notice the
shared token on their own.

Work functions receive ``(batch, token)``. They may be coroutine functions,
async generator functions or plain functions; plain functions run on a
per-call thread pool with one thread per slice, up to ``batching.max_workers``
threads. Plain work that blocks waiting for other batches needs that cap to
cover every slice.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, AsyncIterator, Callable, List, Optional, Tuple, TypeVar, Union

from batch_runner.cancellation import CancellationToken
from batch_runner.deadline import (
    Deadline,
    DeadlineArbiter,
    abandon,
    await_task,
    is_async_callable,
    to_seconds,
)
from batch_runner.partition import apartition, partition
from batch_runner.utils.logging_utils import get_logger
from batch_runner.utils.settings import get_batching_settings

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Items = Union[Iterable[T], AsyncIterable[T], None]
WorkFn = Callable[[List[T], CancellationToken], Any]

# Marks a deadline argument that was not passed; the configured default applies.
FROM_SETTINGS: Any = object()


def _prepare(
    items: Any,
    batch_size: Optional[int],
    work: Any,
    deadline: Any,
) -> Tuple[int, Optional[float]]:
    """Validate arguments and fill in configured defaults.

    Returns:
        Tuple of (batch_size, deadline_seconds)

    Raises:
        TypeError: If an argument has the wrong type
        ValueError: If the deadline is negative

    """
    if not callable(work):
        raise TypeError(f"work must be callable, got {type(work).__name__}")
    if items is not None and not isinstance(items, (Iterable, AsyncIterable)):
        raise TypeError(f"items must be iterable, got {type(items).__name__}")

    if batch_size is None or deadline is FROM_SETTINGS:
        defaults = get_batching_settings()
        if batch_size is None:
            batch_size = defaults["batch_size"]
        if deadline is FROM_SETTINGS:
            deadline = defaults["deadline_seconds"]

    if not isinstance(batch_size, int) or isinstance(batch_size, bool):
        raise TypeError(f"batch_size must be an int, got {type(batch_size).__name__}")

    return batch_size, to_seconds(deadline)


def _call_plain(work: WorkFn, batch: List[Any], token: CancellationToken, collect: bool) -> Any:
    output = work(batch, token)
    if not collect or output is None:
        return output
    if inspect.isawaitable(output) or isinstance(output, AsyncIterable):
        # Finished on the event loop.
        return output
    return _as_list(output)


def _as_list(output: Any) -> List[Any]:
    if output is None:
        return []
    if isinstance(output, list):
        return output
    if isinstance(output, (str, bytes)) or not isinstance(output, Iterable):
        raise TypeError(
            f"work must return an iterable of results, got {type(output).__name__}"
        )
    return list(output)


async def _run_batch(
    index: int,
    work: WorkFn,
    batch: List[Any],
    token: CancellationToken,
    executor: Optional[ThreadPoolExecutor],
    collect: bool,
) -> Optional[List[Any]]:
    token.raise_if_cancelled()

    if executor is None:
        output = work(batch, token)
    else:
        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(executor, _call_plain, work, batch, token, collect)

    if inspect.isawaitable(output):
        output = await output
    if isinstance(output, AsyncIterable):
        # Drain here so streams of different batches progress concurrently.
        output = [item async for item in output]

    logger.debug(f"Batch {index} finished ({len(batch)} items)")
    return _as_list(output) if collect else None


def _thread_count(slice_count: int) -> int:
    """One thread per slice, capped by ``batching.max_workers``."""
    cap = get_batching_settings().get("max_workers")
    if isinstance(cap, int) and not isinstance(cap, bool) and cap > 0:
        return min(slice_count, cap)
    return slice_count


async def _slices(items: Items[T], batch_size: int, token: CancellationToken) -> List[List[T]]:
    if isinstance(items, AsyncIterable):
        return [chunk async for chunk in apartition(items, batch_size, token)]
    return list(partition(items, batch_size))


async def _batch_outputs(
    items: Items[T],
    batch_size: int,
    work: WorkFn,
    deadline: Optional[float],
    token: Optional[CancellationToken],
    collect: bool,
) -> AsyncIterator[Optional[List[Any]]]:
    """Yield each batch's output in slice order."""
    with DeadlineArbiter(deadline, token) as arbiter:
        linked = arbiter.token
        with arbiter.arbitrate():
            slices = await _slices(items, batch_size, linked)

        if not slices:
            logger.debug("No slices to run")
            return

        logger.info(
            f"Launching {len(slices)} batches: items={sum(len(s) for s in slices)}, "
            f"batch_size={batch_size}, deadline={deadline}s"
        )

        executor: Optional[ThreadPoolExecutor] = None
        if not is_async_callable(work):
            executor = ThreadPoolExecutor(
                max_workers=_thread_count(len(slices)), thread_name_prefix="batch_runner"
            )

        tasks = [
            asyncio.ensure_future(_run_batch(index, work, batch, linked, executor, collect))
            for index, batch in enumerate(slices)
        ]

        consumed = 0
        try:
            for task in tasks:
                with arbiter.arbitrate():
                    linked.raise_if_cancelled()
                    output = await await_task(task)
                consumed += 1
                yield output
        finally:
            for task in tasks[consumed:]:
                abandon(task)
            if executor is not None:
                executor.shutdown(wait=False)


async def run_batches(
    items: Items[T],
    batch_size: Optional[int],
    work: WorkFn,
    deadline: Deadline = FROM_SETTINGS,
    token: Optional[CancellationToken] = None,
) -> None:
    """Run ``work`` on every slice of ``items`` concurrently, ignoring results.

    Args:
        items: Input items (sync or async iterable, or None)
        batch_size: Slice length; None uses the configured default, <= 0 runs nothing
        work: ``work(batch, token)``; its return value is ignored
        deadline: Seconds or timedelta for the whole call; None disables it
        token: Optional caller cancellation token

    Raises:
        DeadlineExceededError: If the deadline fires before the call completes
        OperationCancelledError: If ``token`` fires first
        Exception: The first failure raised by ``work``, in slice order

    """
    batch_size, seconds = _prepare(items, batch_size, work, deadline)
    outputs = _batch_outputs(items, batch_size, work, seconds, token, collect=False)
    try:
        async for _ in outputs:
            pass
    finally:
        await outputs.aclose()


def map_batches(
    items: Items[T],
    batch_size: Optional[int],
    work: Callable[[List[T], CancellationToken], Any],
    deadline: Deadline = FROM_SETTINGS,
    token: Optional[CancellationToken] = None,
) -> AsyncIterator[R]:
    """Run ``work`` on every slice concurrently and stream the results in order.

    ``work`` may return a sequence (plain function), an awaitable of a
    sequence (coroutine function) or an async stream (async generator). The
    results are yielded batch by batch in slice order and, within a batch, in
    the order ``work`` produced them.

    Arguments are validated immediately; the deadline starts when iteration
    begins.

    Raises:
        TypeError: If an argument has the wrong type
        ValueError: If the deadline is negative

    """
    batch_size, seconds = _prepare(items, batch_size, work, deadline)
    return _flatten(_batch_outputs(items, batch_size, work, seconds, token, collect=True))


async def _flatten(outputs: AsyncIterator[Optional[List[Any]]]) -> AsyncIterator[Any]:
    try:
        async for batch_results in outputs:
            for result in batch_results or ():
                yield result
    finally:
        await outputs.aclose()


async def collect_batches(
    items: Items[T],
    batch_size: Optional[int],
    work: Callable[[List[T], CancellationToken], Any],
    deadline: Deadline = FROM_SETTINGS,
    token: Optional[CancellationToken] = None,
) -> List[R]:
    """Same as ``map_batches`` but returns every result in one list."""
    results = map_batches(items, batch_size, work, deadline, token)
    return [result async for result in results]
