"""Registry for the host object that provides the backend command bridge.

The engine process (or an in-process adapter around it) attaches a *host*
object once it is available.  A host must expose an ``invoke(command, args)``
callable, either directly or through a ``core`` / ``bridge`` attribute, and may
expose ``listen(event, handler)`` (directly or through an ``event`` attribute)
returning a callable that removes the subscription.

Attachment can happen at any moment after start-up, which is why consumers go
through :meth:`exr_inspector.core.gateway.CommandGateway.ensure_ready` instead
of reading the registry directly.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Optional


LOGGER = logging.getLogger(__name__)

_host_lock = threading.Lock()
_host: Optional[Any] = None


def attach_host(host: Any) -> None:
    """Publish ``host`` as the process-wide bridge host."""

    global _host
    with _host_lock:
        _host = host
    LOGGER.info("Bridge host attached: %s", type(host).__name__, extra={"component": "BridgeRegistry"})


def detach_host() -> None:
    """Remove the current host.  Already resolved gateways keep their reference."""

    global _host
    with _host_lock:
        _host = None


def current_host() -> Optional[Any]:
    with _host_lock:
        return _host


__all__ = ["attach_host", "current_host", "detach_host"]
