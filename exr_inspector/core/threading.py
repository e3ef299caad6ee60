"""Background execution of blocking backend calls.

:class:`ThreadController` wraps a ``ThreadPoolExecutor`` and keeps track of
futures that have not finished yet so they can be cancelled together when a
document is closed.  Work submitted with a :class:`CancellationToken` is skipped
when the token is already cancelled by the time a worker picks it up.
"""
from __future__ import annotations

import concurrent.futures
import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Optional

from .cancellation import CancellationToken


Callback = Callable[[concurrent.futures.Future], None]


class ThreadController:
    """Coordinates threaded execution of background tasks."""

    def __init__(self, max_workers: Optional[int] = None, *, name: str = "exr-inspector") -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: Deque[concurrent.futures.Future] = deque()
        self._lock = threading.Lock()
        self._logger = logging.getLogger(__name__)
        self._shutdown = False
        self.name = name

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        callback: Optional[Callback] = None,
        cancel_token: Optional[CancellationToken] = None,
        **kwargs: Any,
    ) -> concurrent.futures.Future:
        """Submit a callable to execute in the background."""

        def _run() -> Any:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            return fn(*args, **kwargs)

        with self._lock:
            if self._shutdown:
                raise RuntimeError(f"{self.name} thread controller has been shut down")
            future = self._executor.submit(_run)
            self._pending.append(future)
        if cancel_token is not None:
            cancel_token.add_callback(future.cancel)
        if callback is not None:
            future.add_done_callback(callback)
        future.add_done_callback(self._cleanup_future)
        self._logger.debug("Task submitted", extra={"component": "ThreadController", "pending": self.pending_count()})
        return future

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def cancel_all(self) -> None:
        """Cancel futures that have not started yet."""

        with self._lock:
            for future in list(self._pending):
                future.cancel()
            self._pending.clear()
        self._logger.info("Pending %s tasks cancelled", self.name, extra={"component": "ThreadController"})

    def shutdown(self, wait: bool = True, *, cancel_pending: bool = True) -> None:
        """Shut down the executor.

        With ``cancel_pending=False`` work already queued still runs before the
        workers exit.
        """

        if cancel_pending:
            self.cancel_all()
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=wait)
        self._logger.info("Thread controller %s shutdown", self.name, extra={"component": "ThreadController"})

    def _cleanup_future(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            if future in self._pending:
                self._pending.remove(future)


__all__ = ["ThreadController"]
