"""Cooperative cancellation shared by the loop, the model stream and the tools."""

import asyncio
import logging
import signal
import threading
from typing import Callable

_log = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot cancellation flag passed by reference into every suspending call.

    Safe to trip from another thread (signal handler, keyboard listener).
    Coroutines can either poll ``cancelled`` or ``await wait()``.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Trip the token. Subsequent calls are no-ops."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._reason = reason
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        _log.debug("Cancellation requested: %s", reason or "no reason given")
        for callback in callbacks:
            try:
                callback()
            except Exception:
                _log.exception("Cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback fired once on cancel; returns a function that unregisters it.

        If the token is already tripped the callback runs immediately.
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        callback()
        return lambda: None

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    async def wait(self) -> None:
        """Suspend until the token is tripped."""
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()

        def _wake() -> None:
            def _resolve() -> None:
                if not waiter.done():
                    waiter.set_result(None)

            loop.call_soon_threadsafe(_resolve)

        remove = self.add_callback(_wake)
        try:
            await waiter
        finally:
            remove()


class SigintCanceller:
    """Routes Ctrl+C to a token while a task is running."""

    def __init__(self, token: CancellationToken) -> None:
        self._token = token
        self._original_handler = None

    def __enter__(self) -> "SigintCanceller":
        self._original_handler = signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._original_handler is not None:
            signal.signal(signal.SIGINT, self._original_handler)

    def _handle(self, signum, frame) -> None:
        self._token.cancel("interrupted by user")
