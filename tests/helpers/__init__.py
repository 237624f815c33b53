"""Test helper utilities package.

Shared timing constants and work functions for the batch runner tests.
"""

import time
from contextlib import contextmanager
from typing import Iterator, List

from batch_runner import CancellationToken, OperationCancelledError

# Margin for scheduling overhead in wall-clock assertions. If tests start
# failing intermittently on a loaded machine, raise this first.
SYSTEM_PROCESSING_DELAY = 0.25
BATCH_ACTION_SLEEP = 1.0

TEST_ITEMS = list(range(100))


def blocking_sleep(token: CancellationToken, seconds: float) -> None:
    """Sleep on the calling thread, raising if the token fires first."""
    if token.wait(seconds):
        raise OperationCancelledError("cancelled while sleeping")


def threaded_batch_action(items: List[int], token: CancellationToken) -> List[int]:
    """Plain work function: ~BATCH_ACTION_SLEEP per batch, polling the token."""
    results = []
    for item in items:
        token.raise_if_cancelled()
        blocking_sleep(token, BATCH_ACTION_SLEEP / len(items))
        results.append(item)
    return results


async def async_batch_action(items: List[int], token: CancellationToken) -> List[int]:
    """Coroutine work function: ~BATCH_ACTION_SLEEP per batch."""
    results = []
    for item in items:
        token.raise_if_cancelled()
        await token.sleep(BATCH_ACTION_SLEEP / len(items))
        results.append(item)
    return results


async def streaming_batch_action(items: List[int], token: CancellationToken):
    """Async generator work function: ~BATCH_ACTION_SLEEP per batch."""
    for item in items:
        token.raise_if_cancelled()
        await token.sleep(BATCH_ACTION_SLEEP / len(items))
        yield item


@contextmanager
def stopwatch() -> Iterator[List[float]]:
    """Measure elapsed wall-clock seconds; the value is in ``result[0]``."""
    result = [0.0]
    start = time.monotonic()
    try:
        yield result
    finally:
        result[0] = time.monotonic() - start
