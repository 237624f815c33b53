"""
batch_runner: concurrent batch execution with a shared deadline.

Quick start:
    >>> import asyncio
    >>> from batch_runner import collect_batches
    >>> async def double(batch, token):
    ...     await token.sleep(0.01)
    ...     return [x * 2 for x in batch]
    >>> asyncio.run(collect_batches(range(6), 2, double, deadline=5))
    [0, 2, 4, 6, 8, 10]
"""

__version__ = "1.0.0"

from .cancellation import CancellationSource, CancellationToken
from .deadline import DeadlineArbiter, run_with_deadline
from .exceptions import BatchRunnerError, DeadlineExceededError, OperationCancelledError
from .partition import apartition, partition
from .scheduler import collect_batches, map_batches, run_batches
from .utils.logging_utils import setup_logging
from .utils.settings import get_settings

__all__ = [
    "__version__",
    "BatchRunnerError",
    "CancellationSource",
    "CancellationToken",
    "DeadlineArbiter",
    "DeadlineExceededError",
    "OperationCancelledError",
    "apartition",
    "collect_batches",
    "get_settings",
    "map_batches",
    "partition",
    "run_batches",
    "run_with_deadline",
    "setup_logging",
]
