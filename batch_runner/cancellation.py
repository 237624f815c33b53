"""Cooperative cancellation signals.

A ``CancellationSource`` owns a one-shot flag. Work functions receive its
``CancellationToken`` and poll it (``raise_if_cancelled``, ``wait``,
``sleep``); nothing here ever interrupts a running thread or task.

Sources can cancel themselves after a delay and can be linked to other tokens
so that they fire as soon as any parent fires. All state is guarded by a lock
and only ever moves from "not cancelled" to "cancelled".
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from typing import Callable, Dict, List, Optional

from batch_runner.exceptions import OperationCancelledError
from batch_runner.utils.logging_utils import get_logger

logger = get_logger(__name__)

Callback = Callable[[], None]


def _noop() -> None:
    return None


class CancellationToken:
    """Read side of a ``CancellationSource``."""

    def __init__(self, source: "CancellationSource") -> None:
        self._source = source

    @classmethod
    def none(cls) -> "CancellationToken":
        """Return a token that never fires."""
        source = CancellationSource()
        source._cancellable = False
        return source.token

    @property
    def can_be_cancelled(self) -> bool:
        return self._source._cancellable

    @property
    def is_cancelled(self) -> bool:
        return self._source.is_cancelled

    def raise_if_cancelled(self) -> None:
        """Raise ``OperationCancelledError`` if the token has fired."""
        if self._source.is_cancelled:
            raise OperationCancelledError("The operation was cancelled")

    def register(self, callback: Callback) -> Callback:
        """Run ``callback`` once when the token fires.

        If the token has already fired the callback runs immediately.

        Args:
            callback: Zero-argument callable

        Returns:
            A callable that removes the registration

        """
        return self._source._register(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block the calling thread until the token fires or ``timeout`` elapses.

        Returns:
            True if the token fired

        """
        return self._source._event.wait(timeout)

    async def wait_for_cancel(self, timeout: Optional[float] = None) -> bool:
        """Suspend until the token fires or ``timeout`` elapses.

        Returns:
            True if the token fired

        """
        if self.is_cancelled:
            return True
        if not self.can_be_cancelled:
            if timeout is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(timeout)
            return False

        loop = asyncio.get_running_loop()
        fired: asyncio.Future[None] = loop.create_future()

        def _resolve() -> None:
            if not fired.done():
                fired.set_result(None)

        def _on_cancel() -> None:
            # Sources may fire from a timer thread.
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve)

        unregister = self.register(_on_cancel)
        try:
            done, _ = await asyncio.wait({fired}, timeout=timeout)
            return fired in done or self.is_cancelled
        finally:
            unregister()
            if not fired.done():
                fired.cancel()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the token fires first.

        Raises:
            OperationCancelledError: If the token fires before the delay ends

        """
        self.raise_if_cancelled()
        if await self.wait_for_cancel(seconds):
            raise OperationCancelledError("The operation was cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(is_cancelled={self.is_cancelled})"


class CancellationSource:
    """Owner of a one-shot cancellation flag.

    Args:
        cancel_after: Optional delay in seconds after which the source cancels
            itself

    """

    def __init__(self, cancel_after: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callback] = {}
        self._ids = itertools.count()
        self._timer: Optional[threading.Timer] = None
        self._parent_links: List[Callback] = []
        self._cancellable = True
        self._closed = False
        self.token = CancellationToken(self)
        if cancel_after is not None:
            self.cancel_after(cancel_after)

    @classmethod
    def linked(cls, *tokens: Optional[CancellationToken]) -> "CancellationSource":
        """Create a source that fires when any of ``tokens`` fires.

        ``None`` entries and tokens that can never fire are ignored. Closing
        the returned source detaches it from its parents.
        """
        source = cls()
        for token in tokens:
            if token is None or not token.can_be_cancelled:
                continue
            unlink = token.register(source.cancel)
            with source._lock:
                source._parent_links.append(unlink)
        return source

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the source. Later calls are no-ops."""
        if not self._cancellable:
            return
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            timer, self._timer = self._timer, None

        if timer is not None:
            timer.cancel()
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.exception(f"Cancellation callback failed: {e}")

    def cancel_after(self, seconds: float) -> None:
        """Schedule the source to fire after ``seconds``.

        Replaces any previously scheduled delay.

        Raises:
            ValueError: If ``seconds`` is negative

        """
        if seconds < 0:
            raise ValueError(f"cancel_after must be >= 0, got {seconds}")

        with self._lock:
            if self._event.is_set() or self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            timer: Optional[threading.Timer] = None
            if seconds > 0:
                timer = threading.Timer(seconds, self.cancel)
                timer.daemon = True
                self._timer = timer

        if timer is None:
            self.cancel()
        else:
            timer.start()

    def close(self) -> None:
        """Stop any pending timer and detach from linked parents.

        The cancelled state is left as is. Safe to call more than once.
        """
        with self._lock:
            self._closed = True
            timer, self._timer = self._timer, None
            links, self._parent_links = self._parent_links, []

        if timer is not None:
            timer.cancel()
        for unlink in links:
            unlink()

    def _register(self, callback: Callback) -> Callback:
        if not self._cancellable:
            return _noop
        with self._lock:
            if not self._event.is_set():
                key = next(self._ids)
                self._callbacks[key] = callback
                return lambda: self._unregister(key)
        callback()
        return _noop

    def _unregister(self, key: int) -> None:
        with self._lock:
            self._callbacks.pop(key, None)

    def __enter__(self) -> "CancellationSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"CancellationSource(is_cancelled={self.is_cancelled})"
