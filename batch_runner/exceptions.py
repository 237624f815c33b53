"""Exception types raised by the batch runner."""

from typing import Optional


class BatchRunnerError(Exception):
    """Base class for errors raised by batch_runner."""

    pass


class OperationCancelledError(BatchRunnerError):
    """Raised when a cancellation token fires before the work completes.

    This is the only exception the deadline arbiter inspects. When the caller's
    own token caused it, it is propagated unchanged.
    """

    pass


class DeadlineExceededError(BatchRunnerError, TimeoutError):
    """Raised when the shared deadline fires before the work completes.

    Always chained (``raise ... from``) to the cancellation that triggered it.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self.deadline = deadline
        if deadline is None:
            message = "Deadline exceeded"
        else:
            message = f"Deadline of {deadline:g}s exceeded"
        super().__init__(message)
