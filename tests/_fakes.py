"""In-process stand-ins for the backend bridge used across the test suite."""

from __future__ import annotations

import base64
import io
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Tuple, Union

from PIL import Image


Handler = Union[Callable[[Dict[str, Any]], Any], BaseException]


def png_bytes(width: int, height: int, rgba: Tuple[int, int, int, int] = (10, 20, 30, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), rgba).save(buffer, format="PNG")
    return buffer.getvalue()


def png_base64(width: int, height: int, rgba: Tuple[int, int, int, int] = (10, 20, 30, 255)) -> str:
    return base64.b64encode(png_bytes(width, height, rgba)).decode("ascii")


def preview_payload(width: int, height: int, rgba: Tuple[int, int, int, int] = (10, 20, 30, 255)) -> Tuple[int, int, str]:
    return (width, height, png_base64(width, height, rgba))


class FakeBridge:
    """Records invocations and dispatches them to per-command handlers.

    A handler is either a callable receiving the argument mapping or an
    exception instance that is raised.  Commands without a handler return
    ``None``.
    """

    def __init__(self, handlers: Dict[str, Handler] | None = None) -> None:
        self.handlers: Dict[str, Handler] = dict(handlers or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.listeners: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)
        self.unsubscribed: List[str] = []
        self._lock = threading.Lock()

    def invoke(self, command: str, args: Dict[str, Any]) -> Any:
        with self._lock:
            self.calls.append((command, dict(args)))
        handler = self.handlers.get(command)
        if handler is None:
            return None
        if isinstance(handler, BaseException):
            raise handler
        return handler(args)

    def listen(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        with self._lock:
            self.listeners[event].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                self.listeners[event].remove(handler)
                self.unsubscribed.append(event)

        return unsubscribe

    def emit(self, event: str, payload: Any) -> None:
        with self._lock:
            handlers = list(self.listeners[event])
        for handler in handlers:
            handler(payload)

    def commands(self) -> List[str]:
        with self._lock:
            return [command for command, _ in self.calls]

    def calls_for(self, command: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [args for name, args in self.calls if name == command]
