"""Progress subscriptions and cooperative cancellation for backend operations.

Long running backend commands report progress out-of-band through named
events.  :class:`ProgressChannel` ties one such subscription to a single
operation through a :class:`PendingOperation`, whose :meth:`~PendingOperation.release`
removes the listener exactly once no matter how the operation ends.  The
:meth:`ProgressChannel.tracked` context manager is the preferred way to scope
the subscription::

    token = CancellationToken()
    with channel.tracked(OperationKind.OPEN, on_progress, token=token):
        gateway.invoke(request)

Cancellation is cooperative.  :meth:`ProgressChannel.request_cancel` flags the
token and asks the backend to stop through the operation's cancel command, but
the backend may still finish or fail with a "cancelled" error afterwards.
"""
from __future__ import annotations

import concurrent.futures
import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

from .gateway import BridgeUnavailableError, CommandGateway


LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class OperationKind(Enum):
    """Backend operations that report progress, with their event and cancel command."""

    OPEN = ("open-progress", "cancel_open")
    EXPORT = ("export-progress", "cancel_open")
    SEQUENCE = ("seq-progress", "cancel_seq_fps")
    VIDEO = ("video-progress", None)

    def __init__(self, event_name: str, cancel_command: Optional[str]) -> None:
        self.event_name = event_name
        self.cancel_command = cancel_command

    @property
    def cancellable(self) -> bool:
        return self.cancel_command is not None


class CancellationToken:
    """Thread-safe flag shared between the requester and the running operation."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover
                LOGGER.exception("Cancellation callback raised", extra={"component": "CancellationToken"})

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately when already cancelled)."""

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise concurrent.futures.CancelledError()


def coerce_percent(payload: Any) -> int:
    """Convert an event payload into an integer percentage in ``[0, 100]``."""

    if isinstance(payload, dict):
        payload = payload.get("payload", payload.get("percent", 0))
    try:
        value = float(payload)
    except (TypeError, ValueError):
        return 0
    if value != value:  # NaN
        return 0
    return int(max(0.0, min(100.0, value)))


class PendingOperation:
    """One in-flight backend call together with its progress subscription."""

    def __init__(
        self,
        kind: OperationKind,
        unsubscribe: Callable[[], None],
        token: Optional[CancellationToken] = None,
    ) -> None:
        self.kind = kind
        self.token = token or CancellationToken()
        self._unsubscribe = unsubscribe
        self._released = False
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Remove the progress listener.  Subsequent calls do nothing."""

        with self._lock:
            if self._released:
                return
            self._released = True
            unsubscribe = self._unsubscribe
        try:
            unsubscribe()
        except Exception:
            LOGGER.exception(
                "Failed to unsubscribe from %s", self.kind.event_name, extra={"component": "ProgressChannel"}
            )


class ProgressChannel:
    """Create progress subscriptions scoped to a single operation."""

    def __init__(self, gateway: CommandGateway) -> None:
        self._gateway = gateway

    def begin_tracked(
        self,
        kind: OperationKind,
        on_progress: Optional[ProgressCallback] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> PendingOperation:
        """Subscribe to ``kind``'s progress event.  The caller must release the result."""

        def _handle(payload: Any) -> None:
            if on_progress is None:
                return
            if token is not None and token.cancelled:
                return
            on_progress(coerce_percent(payload))

        try:
            unsubscribe = self._gateway.listen(kind.event_name, _handle)
        except BridgeUnavailableError:
            raise
        except Exception:
            # Progress is cosmetic; the operation itself still runs.
            LOGGER.warning(
                "Progress subscription for %s failed", kind.event_name, exc_info=True,
                extra={"component": "ProgressChannel"},
            )
            unsubscribe = _noop
        return PendingOperation(kind, unsubscribe, token)

    @contextmanager
    def tracked(
        self,
        kind: OperationKind,
        on_progress: Optional[ProgressCallback] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> Iterator[PendingOperation]:
        operation = self.begin_tracked(kind, on_progress, token=token)
        try:
            yield operation
        finally:
            operation.release()

    def request_cancel(self, kind: OperationKind, token: Optional[CancellationToken] = None) -> bool:
        """Flag ``token`` and ask the backend to abort ``kind``.

        Returns ``True`` when the backend cancel command was delivered.
        """

        if token is not None:
            token.cancel()
        if kind.cancel_command is None:
            LOGGER.debug("%s has no backend cancel command", kind.name, extra={"component": "ProgressChannel"})
            return False
        try:
            self._gateway.invoke(kind.cancel_command)
        except Exception:
            LOGGER.warning(
                "Cancel command %s failed", kind.cancel_command, exc_info=True,
                extra={"component": "ProgressChannel"},
            )
            return False
        LOGGER.info("Cancellation requested for %s", kind.name, extra={"component": "ProgressChannel"})
        return True


def _noop() -> None:
    return None


__all__ = [
    "CancellationToken",
    "OperationKind",
    "PendingOperation",
    "ProgressCallback",
    "ProgressChannel",
    "coerce_percent",
]
