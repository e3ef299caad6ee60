"""Single entry point for invoking backend commands through the host bridge.

The host may attach after the UI has started, so callers first wait for it
with :meth:`CommandGateway.ensure_ready`.  Once an invocation function has been
resolved it is cached for the lifetime of the process; when the host later
disappears individual calls fail instead of the readiness gate.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from . import bridge
from .commands import CommandRequest


LOGGER = logging.getLogger(__name__)

CANCELLED_MARKER = "cancelled"
DEFAULT_READY_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.05

Invoker = Callable[[str, Dict[str, Any]], Any]
Listener = Callable[[str, Callable[[Any], None]], Callable[[], None]]
HostLookup = Callable[[], Optional[Any]]


class BridgeUnavailableError(RuntimeError):
    """Raised when the host bridge could not be resolved in time."""


def is_cancellation_error(error: BaseException | str | None) -> bool:
    """Return ``True`` when ``error`` reports a user-requested cancellation."""

    if error is None:
        return False
    return CANCELLED_MARKER in str(error).lower()


@dataclass(frozen=True)
class _ResolvedBridge:
    invoke: Invoker
    listen: Optional[Listener]


def _resolve_attribute(host: Any, *paths: tuple[str, ...]) -> Optional[Callable[..., Any]]:
    for path in paths:
        target = host
        for name in path:
            target = getattr(target, name, None)
            if target is None:
                break
        if callable(target):
            return target
    return None


def _resolve_bridge(host: Any) -> Optional[_ResolvedBridge]:
    if host is None:
        return None
    invoke = _resolve_attribute(host, ("invoke",), ("core", "invoke"), ("bridge", "invoke"))
    if invoke is None:
        return None
    listen = _resolve_attribute(host, ("listen",), ("event", "listen"))
    return _ResolvedBridge(invoke=invoke, listen=listen)


class CommandGateway:
    """Resolve the host bridge and forward commands to it."""

    _shared: Optional[_ResolvedBridge] = None
    _shared_lock = threading.Lock()

    def __init__(
        self,
        host_lookup: Optional[HostLookup] = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
    ) -> None:
        self._host_lookup = host_lookup or bridge.current_host
        self._poll_interval = max(0.005, float(poll_interval))
        self.ready_timeout = float(ready_timeout)
        self._session_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------
    @classmethod
    def reset_cache(cls) -> None:
        """Forget the process-wide bridge.  Intended for tests."""

        with cls._shared_lock:
            cls._shared = None

    def is_ready(self) -> bool:
        return type(self)._shared is not None

    def ensure_ready(self, timeout: Optional[float] = None) -> bool:
        """Poll for the host bridge until it resolves or ``timeout`` elapses."""

        if type(self)._shared is not None:
            return True
        limit = self.ready_timeout if timeout is None else float(timeout)
        deadline = time.monotonic() + max(0.0, limit)
        waiter = threading.Event()
        while True:
            resolved = _resolve_bridge(self._host_lookup())
            if resolved is not None:
                with type(self)._shared_lock:
                    if type(self)._shared is None:
                        type(self)._shared = resolved
                LOGGER.debug("Bridge resolved", extra={"component": "CommandGateway"})
                return True
            if time.monotonic() >= deadline:
                break
            waiter.wait(self._poll_interval)
        LOGGER.warning(
            "Bridge did not become available within %.2fs", limit, extra={"component": "CommandGateway"}
        )
        return False

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------
    def invoke(
        self,
        command: Union[str, CommandRequest],
        args: Optional[Union[Mapping[str, Any], CommandRequest]] = None,
    ) -> Any:
        """Invoke ``command`` on the backend and return its result.

        ``command`` may be a command name or a request object; in the latter
        case the request supplies both the name and the arguments.
        """

        if isinstance(command, CommandRequest):
            args, command = command, command.command
        if isinstance(args, CommandRequest):
            payload = args.to_args()
        else:
            payload = dict(args or {})
        resolved = self._require_bridge()
        LOGGER.debug("invoke %s", command, extra={"component": "CommandGateway"})
        return resolved.invoke(command, payload)

    def listen(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe ``handler`` to ``event`` and return the unsubscribe callable."""

        resolved = self._require_bridge()
        if resolved.listen is None:
            LOGGER.debug("Host has no event API; %s not tracked", event, extra={"component": "CommandGateway"})
            return _noop
        unsubscribe = resolved.listen(event, handler)
        return unsubscribe if callable(unsubscribe) else _noop

    def exclusive(self) -> threading.RLock:
        """Lock guarding the backend's shared current-image state."""

        return self._session_lock

    def _require_bridge(self) -> _ResolvedBridge:
        resolved = type(self)._shared
        if resolved is None:
            raise BridgeUnavailableError("Backend bridge is not available")
        return resolved


def _noop() -> None:
    return None


__all__ = [
    "BridgeUnavailableError",
    "CANCELLED_MARKER",
    "CommandGateway",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_READY_TIMEOUT",
    "is_cancellation_error",
]
