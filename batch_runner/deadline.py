"""Deadline arbitration.

A ``DeadlineArbiter`` links the caller's cancellation token with a token of
its own that fires when the deadline passes. Work only ever sees the linked
token, so it cannot tell the two causes apart; the arbiter can, after the
fact, by looking at the deadline's own source. That source fires at most once
and never resets, so reading it once a cancellation has been observed is
enough to attribute the cause:

- deadline source fired -> ``DeadlineExceededError`` chained to the original
- otherwise -> the original ``OperationCancelledError``, unchanged
"""

from __future__ import annotations

import asyncio
import datetime
import functools
import inspect
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Optional, Set, TypeVar, Union

from batch_runner.cancellation import CancellationSource, CancellationToken
from batch_runner.exceptions import DeadlineExceededError, OperationCancelledError
from batch_runner.utils.logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Deadline = Union[int, float, datetime.timedelta, None]

# Strong references to tasks nobody awaits any more.
_abandoned: Set["asyncio.Future[Any]"] = set()


def to_seconds(deadline: Deadline) -> Optional[float]:
    """Normalise a deadline to seconds.

    Args:
        deadline: Seconds, a timedelta, or None for no deadline

    Returns:
        Seconds as float, or None

    Raises:
        TypeError: If deadline is of an unsupported type
        ValueError: If deadline is negative

    """
    if deadline is None:
        return None
    if isinstance(deadline, datetime.timedelta):
        seconds = deadline.total_seconds()
    elif isinstance(deadline, (int, float)) and not isinstance(deadline, bool):
        seconds = float(deadline)
    else:
        raise TypeError(f"deadline must be seconds or a timedelta, got {type(deadline).__name__}")
    if seconds < 0:
        raise ValueError(f"deadline must be >= 0, got {seconds}")
    return seconds


def _log_abandoned_outcome(task: "asyncio.Future[Any]") -> None:
    _abandoned.discard(task)
    if task.cancelled():
        logger.debug("Abandoned task was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned task finished with {exc!r}")


def abandon(task: "asyncio.Future[Any]") -> None:
    """Stop waiting for ``task`` without losing track of it.

    The task keeps running; its outcome is retrieved and logged at debug level
    once it settles.
    """
    if task.done():
        _log_abandoned_outcome(task)
        return
    _abandoned.add(task)
    task.add_done_callback(_log_abandoned_outcome)


def is_async_callable(fn: Any) -> bool:
    """True for coroutine and async generator functions, partials included."""
    while isinstance(fn, functools.partial):
        fn = fn.func
    if inspect.iscoroutinefunction(fn) or inspect.isasyncgenfunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return inspect.iscoroutinefunction(call) or inspect.isasyncgenfunction(call)


def task_outcome(task: "asyncio.Future[T]") -> T:
    """Result of a finished task; a cancelled task raises ``OperationCancelledError``."""
    try:
        return task.result()
    except asyncio.CancelledError as exc:
        raise OperationCancelledError("The task was cancelled") from exc


async def await_task(task: "asyncio.Future[T]") -> T:
    """Await ``task`` without confusing its cancellation with our own.

    Cancellation of the awaiting task is propagated to ``task`` and re-raised
    as ``CancelledError``; cancellation of ``task`` alone surfaces as
    ``OperationCancelledError``.
    """
    try:
        await asyncio.wait({task})
    except asyncio.CancelledError:
        task.cancel()
        raise
    return task_outcome(task)


class DeadlineArbiter:
    """Compose a caller token with a deadline and attribute cancellations.

    The deadline starts counting when the arbiter is created. Use it as a
    context manager so the timer and the parent registrations are released on
    every exit path.

    Args:
        deadline: Seconds, a timedelta, or None for no deadline
        token: Optional caller cancellation token

    """

    def __init__(self, deadline: Deadline, token: Optional[CancellationToken] = None) -> None:
        self.deadline = to_seconds(deadline)
        self._deadline_source = CancellationSource()
        self._linked_source = CancellationSource.linked(self._deadline_source.token, token)
        if self.deadline is not None:
            self._deadline_source.cancel_after(self.deadline)

    @property
    def token(self) -> CancellationToken:
        """Token that fires on the deadline or on caller cancellation."""
        return self._linked_source.token

    @property
    def deadline_expired(self) -> bool:
        return self._deadline_source.is_cancelled

    def classify(self, exc: OperationCancelledError) -> BaseException:
        """Return the exception that should surface for ``exc``."""
        if self._deadline_source.is_cancelled:
            error = DeadlineExceededError(self.deadline)
            error.__cause__ = exc
            return error
        return exc

    @contextmanager
    def arbitrate(self) -> Iterator[None]:
        """Reclassify ``OperationCancelledError`` escaping the block.

        Any other exception, including ``DeadlineExceededError`` raised by
        nested work, passes through untouched.
        """
        try:
            yield
        except OperationCancelledError as exc:
            error = self.classify(exc)
            if error is exc:
                logger.warning("Operation cancelled by caller")
                raise
            logger.warning(f"Deadline of {self.deadline}s exceeded")
            raise error from exc

    def close(self) -> None:
        self._linked_source.close()
        self._deadline_source.close()

    def __enter__(self) -> "DeadlineArbiter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


async def _call_work(
    work: Callable[[CancellationToken], Any],
    token: CancellationToken,
    executor: Optional[ThreadPoolExecutor],
) -> Any:
    if executor is None:
        output = work(token)
    else:
        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(executor, work, token)
    if inspect.isawaitable(output):
        output = await output
    return output


async def run_with_deadline(
    work: Union[Callable[[CancellationToken], Any], Awaitable[T]],
    deadline: Deadline,
    token: Optional[CancellationToken] = None,
) -> Any:
    """Run one unit of work under a deadline and a caller token.

    ``work`` runs in its own task and is raced against the linked token, so
    work that never looks at its token still resolves as soon as either
    signal fires. The losing work task is cancelled and left to settle.

    Plain (non-async) callables run on a worker thread, so blocking work
    cannot hold up the race. A thread that has lost keeps running until the
    callable returns.

    Args:
        work: ``work(token)`` returning a value or an awaitable, or an awaitable
        deadline: Seconds, a timedelta, or None for no deadline
        token: Optional caller cancellation token

    Returns:
        The value produced by ``work``

    Raises:
        DeadlineExceededError: If the deadline fires first
        OperationCancelledError: If the caller's token fires first
        TypeError: If ``work`` is neither callable nor awaitable

    """
    if not callable(work) and not inspect.isawaitable(work):
        raise TypeError(f"work must be callable or awaitable, got {type(work).__name__}")

    executor: Optional[ThreadPoolExecutor] = None
    if callable(work) and not is_async_callable(work):
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch_runner")

    try:
        with DeadlineArbiter(deadline, token) as arbiter:
            with arbiter.arbitrate():
                if arbiter.token.is_cancelled and inspect.iscoroutine(work):
                    work.close()
                arbiter.token.raise_if_cancelled()

                if callable(work):
                    task = asyncio.ensure_future(_call_work(work, arbiter.token, executor))
                else:
                    task = asyncio.ensure_future(work)
                waiter = asyncio.ensure_future(arbiter.token.wait_for_cancel())
                try:
                    await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
                except asyncio.CancelledError:
                    task.cancel()
                    abandon(task)
                    raise
                finally:
                    waiter.cancel()

                if task.done():
                    return task_outcome(task)

                task.cancel()
                abandon(task)
                raise OperationCancelledError("The operation was cancelled")
    finally:
        if executor is not None:
            executor.shutdown(wait=False)
