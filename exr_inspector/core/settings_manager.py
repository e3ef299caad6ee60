"""Settings manager built on top of QSettings with JSON import/export support."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

try:  # pragma: no cover - import handling logic
    from PyQt5.QtCore import QSettings  # type: ignore
except Exception:  # pragma: no cover
    QSettings = None  # type: ignore

from .commands import DEFAULT_PREVIEW_MAX_SIZE, NON_TRANSFORM_LABEL
from .gateway import DEFAULT_POLL_INTERVAL, DEFAULT_READY_TIMEOUT


DEFAULT_SETTINGS: Dict[str, Any] = {
    # Bridge ---------------------------------------------------------------------
    "bridge/ready_timeout": DEFAULT_READY_TIMEOUT,
    "bridge/poll_interval": DEFAULT_POLL_INTERVAL,
    # Preview --------------------------------------------------------------------
    "preview/max_size": DEFAULT_PREVIEW_MAX_SIZE,
    "preview/debounce_ms": 120,
    "preview/high_quality": True,
    # Scopes ---------------------------------------------------------------------
    "scopes/channel": "rgb",
    "scopes/scale": 1,
    # Transforms -----------------------------------------------------------------
    "transform/default": NON_TRANSFORM_LABEL,
    # Export ---------------------------------------------------------------------
    "export/max_size": DEFAULT_PREVIEW_MAX_SIZE,
    # Video ----------------------------------------------------------------------
    "video/fps": 24.0,
    "video/profile": "422hq",
    "video/max_size": DEFAULT_PREVIEW_MAX_SIZE,
}


class _FallbackSettings:
    """In-memory substitute mirroring the ``QSettings`` API."""

    def __init__(self, organization: str, application: str) -> None:
        self._organization = organization
        self._application = application
        self._store: Dict[str, Any] = {}

    def setValue(self, key: str, value: Any) -> None:  # noqa: N802 - Qt naming
        self._store[key] = value

    def value(self, key: str, default: Any = None) -> Any:  # noqa: N802 - Qt naming
        return self._store.get(key, default)

    def remove(self, key: str) -> None:  # noqa: N802 - Qt naming
        self._store.pop(key, None)

    def allKeys(self) -> Iterable[str]:  # noqa: N802 - Qt naming
        return list(self._store.keys())

    def contains(self, key: str) -> bool:  # noqa: N802 - Qt naming
        return key in self._store

    def clear(self) -> None:  # noqa: N802 - Qt naming
        self._store.clear()

    def sync(self) -> None:  # noqa: N802 - Qt naming, pragma: no cover - noop for fallback
        return None


class SettingsManager:
    """High level interface around QSettings supporting JSON serialisation.

    ``QSettings`` stores everything as strings on some platforms, so typed
    accessors (:meth:`get_int`, :meth:`get_float`, :meth:`get_bool`) coerce
    values back and fall back to the registered defaults.
    """

    def __init__(
        self,
        organization: str = "ExrInspector",
        application: str = "ExrInspector",
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        seed_defaults: bool = True,
        in_memory: bool = False,
    ) -> None:
        backend = _FallbackSettings if in_memory or QSettings is None else QSettings
        self._settings = backend(organization, application)
        self.organization = organization
        self.application = application
        self._defaults: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        if defaults:
            self._defaults.update(defaults)
        if seed_defaults:
            self.seed_defaults()

    # ------------------------------------------------------------------
    # Core CRUD helpers
    def get(self, key: str, default: Optional[Any] = None) -> Any:
        if default is None:
            default = self._defaults.get(key)
        return self._settings.value(key, default)

    def set(self, key: str, value: Any) -> None:
        self._settings.setValue(key, value)
        self._settings.sync()

    def remove(self, key: str) -> None:
        self._settings.remove(key)
        self._settings.sync()

    def contains(self, key: str) -> bool:
        return bool(self._settings.contains(key))

    def clear(self) -> None:
        self._settings.clear()
        self._settings.sync()

    def seed_defaults(self) -> None:
        for key, value in self._defaults.items():
            if not self.contains(key):
                self._settings.setValue(key, value)
        self._settings.sync()

    # ------------------------------------------------------------------
    # Typed accessors
    def get_int(self, key: str) -> int:
        try:
            return int(float(self.get(key)))
        except (TypeError, ValueError):
            return int(self._defaults.get(key, 0))

    def get_float(self, key: str) -> float:
        try:
            return float(self.get(key))
        except (TypeError, ValueError):
            return float(self._defaults.get(key, 0.0))

    def get_bool(self, key: str) -> bool:
        value = self.get(key)
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        if value is None:
            return bool(self._defaults.get(key, False))
        return bool(value)

    def get_str(self, key: str) -> str:
        value = self.get(key)
        return "" if value is None else str(value)

    # ------------------------------------------------------------------
    # Serialisation
    def to_dict(self) -> Dict[str, Any]:
        return {key: self._settings.value(key) for key in self._all_keys()}

    def from_dict(self, values: Mapping[str, Any], *, clear: bool = False) -> None:
        if clear:
            self._settings.clear()
        for key, value in values.items():
            self._settings.setValue(key, value)
        self._settings.sync()

    @property
    def backend(self) -> Any:
        """Return the underlying :class:`QSettings` compatible object."""

        return self._settings

    def export_json(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True), encoding="utf-8")

    def import_json(self, path: Path, *, clear: bool = False) -> None:
        """Load settings written by :meth:`export_json`.

        Raises ``FileNotFoundError`` for a missing file and ``ValueError`` when
        the document is not a JSON object.
        """

        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a JSON object")
        self.from_dict(data, clear=clear)

    def _all_keys(self) -> List[str]:
        return list(self._settings.allKeys())


@dataclass(frozen=True)
class ControllerConfig:
    """Values the preview controller reads once per session."""

    ready_timeout: float = DEFAULT_READY_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    preview_max_size: int = DEFAULT_PREVIEW_MAX_SIZE
    debounce_ms: int = 120
    high_quality: bool = True
    scope_channel: str = "rgb"
    scope_scale: float = 1.0
    default_transform: str = NON_TRANSFORM_LABEL
    export_max_size: int = DEFAULT_PREVIEW_MAX_SIZE

    @classmethod
    def from_settings(cls, settings: SettingsManager) -> "ControllerConfig":
        return cls(
            ready_timeout=settings.get_float("bridge/ready_timeout"),
            poll_interval=settings.get_float("bridge/poll_interval"),
            preview_max_size=max(1, settings.get_int("preview/max_size")),
            debounce_ms=max(0, settings.get_int("preview/debounce_ms")),
            high_quality=settings.get_bool("preview/high_quality"),
            scope_channel=settings.get_str("scopes/channel") or "rgb",
            scope_scale=max(0.01, settings.get_float("scopes/scale")),
            default_transform=settings.get_str("transform/default") or NON_TRANSFORM_LABEL,
            export_max_size=max(1, settings.get_int("export/max_size")),
        )


__all__ = ["ControllerConfig", "DEFAULT_SETTINGS", "SettingsManager"]
