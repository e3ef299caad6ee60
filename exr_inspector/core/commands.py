"""Typed request and response structures for backend commands.

Each request dataclass knows the command it targets and converts itself into
the keyword mapping the bridge expects.  Validation happens in
``__post_init__`` so malformed requests never leave the process.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Tuple


DEFAULT_PREVIEW_MAX_SIZE = 2048
LUT_MIN_SIZE = 17
LUT_MAX_SIZE = 65
NON_TRANSFORM_LABEL = "NonTransform"


class CommandValidationError(ValueError):
    """Raised when a request or response does not satisfy its contract."""


def _require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CommandValidationError(f"{name} must be a non-empty string")
    return value.strip()


def _require_positive(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise CommandValidationError(f"{name} must be a number") from exc
    if number <= 0:
        raise CommandValidationError(f"{name} must be positive, got {number}")
    return number


class CommandRequest:
    """Base class for request structures sent through the gateway."""

    command: ClassVar[str] = ""

    def to_args(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class OpenImageRequest(CommandRequest):
    command: ClassVar[str] = "open_image"

    path: str
    max_size: int = DEFAULT_PREVIEW_MAX_SIZE
    exposure: float = 0.0
    gamma: float = 1.0
    lut_path: Optional[str] = None
    high_quality: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", _require_text(self.path, "path"))
        _require_positive(self.max_size, "max_size")
        _require_positive(self.gamma, "gamma")

    def to_args(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "maxSize": int(self.max_size),
            "exposure": float(self.exposure),
            "gamma": float(self.gamma),
            "lutPath": self.lut_path,
            "highQuality": bool(self.high_quality),
        }


@dataclass(frozen=True)
class UpdatePreviewRequest(CommandRequest):
    command: ClassVar[str] = "update_preview"

    max_size: int = DEFAULT_PREVIEW_MAX_SIZE
    exposure: float = 0.0
    gamma: float = 1.0
    lut_path: Optional[str] = None
    use_state_lut: bool = True
    high_quality: bool = True

    def __post_init__(self) -> None:
        _require_positive(self.max_size, "max_size")
        _require_positive(self.gamma, "gamma")

    def to_args(self) -> Dict[str, Any]:
        return {
            "maxSize": int(self.max_size),
            "exposure": float(self.exposure),
            "gamma": float(self.gamma),
            "lutPath": self.lut_path,
            "useStateLut": bool(self.use_state_lut),
            "highQuality": bool(self.high_quality),
        }


@dataclass(frozen=True)
class ProbePixelRequest(CommandRequest):
    command: ClassVar[str] = "probe_pixel"

    x: int
    y: int

    def __post_init__(self) -> None:
        if int(self.x) < 0 or int(self.y) < 0:
            raise CommandValidationError(f"Pixel coordinates must be non-negative: ({self.x}, {self.y})")

    def to_args(self) -> Dict[str, Any]:
        return {"px": int(self.x), "py": int(self.y)}


@dataclass(frozen=True)
class ExportPreviewRequest(CommandRequest):
    command: ClassVar[str] = "export_preview_png"

    output_path: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "output_path", _require_text(self.output_path, "output_path"))

    def to_args(self) -> Dict[str, Any]:
        return {"outPath": self.output_path}


@dataclass(frozen=True)
class ReadMetadataRequest(CommandRequest):
    command: ClassVar[str] = "read_metadata"

    path: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", _require_text(self.path, "path"))

    def to_args(self) -> Dict[str, Any]:
        return {"path": self.path}


@dataclass(frozen=True)
class Lut3dRequest(CommandRequest):
    command: ClassVar[str] = "set_lut_3d"

    src_space: str
    src_tf: str
    dst_space: str
    dst_tf: str
    size: int = 33
    clip_mode: str = "clip"

    def __post_init__(self) -> None:
        for name in ("src_space", "src_tf", "dst_space", "dst_tf"):
            _require_text(getattr(self, name), name)
        # The engine only builds cubes inside this range.
        object.__setattr__(self, "size", max(LUT_MIN_SIZE, min(LUT_MAX_SIZE, int(self.size))))

    def to_args(self) -> Dict[str, Any]:
        return {
            "srcSpace": self.src_space,
            "srcTf": self.src_tf,
            "dstSpace": self.dst_space,
            "dstTf": self.dst_tf,
            "size": self.size,
            "clipMode": self.clip_mode,
        }


@dataclass(frozen=True)
class DefaultTransformRequest(CommandRequest):
    command: ClassVar[str] = "set_default_transform"

    label: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "label", _require_text(self.label, "label"))

    def to_args(self) -> Dict[str, Any]:
        return {"label": self.label}


@dataclass(frozen=True)
class SequenceFpsRequest(CommandRequest):
    """Rewrite the frame-rate attribute of every EXR in ``directory``."""

    command: ClassVar[str] = "seq_fps"

    directory: str
    fps: float = 24.0
    attribute: str = "FramesPerSecond"
    recursive: bool = False
    dry_run: bool = False
    backup: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "directory", _require_text(self.directory, "directory"))
        _require_positive(self.fps, "fps")
        object.__setattr__(self, "attribute", (self.attribute or "").strip() or "FramesPerSecond")

    def to_args(self) -> Dict[str, Any]:
        return {
            "dir": self.directory,
            "fps": float(self.fps),
            "attr": self.attribute,
            "recursive": bool(self.recursive),
            "dryRun": bool(self.dry_run),
            "backup": bool(self.backup),
        }


@dataclass(frozen=True)
class OcioViewsRequest(CommandRequest):
    command: ClassVar[str] = "ocio_views"

    display: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "display", _require_text(self.display, "display"))

    def to_args(self) -> Dict[str, Any]:
        return {"display": self.display}


@dataclass(frozen=True)
class OcioDisplayViewRequest(CommandRequest):
    """Select the OCIO display/view pair used for subsequent previews."""

    command: ClassVar[str] = "set_ocio_display_view"

    display: str
    view: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "display", _require_text(self.display, "display"))
        object.__setattr__(self, "view", _require_text(self.view, "view"))

    def to_args(self) -> Dict[str, Any]:
        return {"display": self.display, "view": self.view}


DEFAULT_PROGRESS_INTERVAL_MS = 100
DEFAULT_PROGRESS_THRESHOLD = 0.5


@dataclass(frozen=True)
class ProgressConfig(CommandRequest):
    """How often the engine emits progress events.

    An event is sent at most every ``interval_ms`` milliseconds and only when
    the percentage moved by at least ``pct_threshold``.
    """

    command: ClassVar[str] = "set_progress_config"

    interval_ms: int = DEFAULT_PROGRESS_INTERVAL_MS
    pct_threshold: float = DEFAULT_PROGRESS_THRESHOLD

    def __post_init__(self) -> None:
        try:
            interval = int(self.interval_ms)
            threshold = float(self.pct_threshold)
        except (TypeError, ValueError) as exc:
            raise CommandValidationError("Progress config values must be numbers") from exc
        if interval < 0 or not 0.0 <= threshold <= 100.0:
            raise CommandValidationError(f"Invalid progress config: {interval} ms, {threshold}%")
        object.__setattr__(self, "interval_ms", interval)
        object.__setattr__(self, "pct_threshold", threshold)

    def to_args(self) -> Dict[str, Any]:
        return {"intervalMs": self.interval_ms, "pctThreshold": self.pct_threshold}

    @classmethod
    def from_payload(cls, payload: Any) -> "ProgressConfig":
        if isinstance(payload, Mapping):
            return cls(
                payload.get("intervalMs", DEFAULT_PROGRESS_INTERVAL_MS),
                payload.get("pctThreshold", DEFAULT_PROGRESS_THRESHOLD),
            )
        try:
            interval, threshold = payload
        except (TypeError, ValueError) as exc:
            raise CommandValidationError("Progress config payload must be (intervalMs, pctThreshold)") from exc
        return cls(interval, threshold)


PRORES_PROFILES = ("proxy", "lt", "422", "422hq", "4444", "4444xq")
_TRANSFER_GAMMA = {"linear": 1.0, "g22": 2.2, "g24": 2.4}


@dataclass(frozen=True)
class ProResExportRequest(CommandRequest):
    """Encode an EXR sequence folder into a ProRes ``.mov``."""

    command: ClassVar[str] = "export_prores"

    directory: str
    output_path: str
    fps: float = 24.0
    colorspace: str = "linear:srgb"
    profile: str = "422hq"
    max_size: int = DEFAULT_PREVIEW_MAX_SIZE
    exposure: float = 0.0
    transfer: str = "g22"
    quality: str = "High"

    def __post_init__(self) -> None:
        object.__setattr__(self, "directory", _require_text(self.directory, "directory"))
        object.__setattr__(self, "output_path", _require_text(self.output_path, "output_path"))
        _require_positive(self.fps, "fps")
        _require_positive(self.max_size, "max_size")
        if self.profile not in PRORES_PROFILES:
            raise CommandValidationError(f"Unknown ProRes profile: {self.profile!r}")
        if self.transfer not in _TRANSFER_GAMMA:
            raise CommandValidationError(f"Unknown transfer function: {self.transfer!r}")

    @property
    def gamma(self) -> float:
        return _TRANSFER_GAMMA[self.transfer]

    def to_args(self) -> Dict[str, Any]:
        return {
            "dir": self.directory,
            "fps": float(self.fps),
            "colorspace": self.colorspace,
            "out": self.output_path,
            "profile": self.profile,
            "maxSize": int(self.max_size),
            "exposure": float(self.exposure),
            "gamma": self.gamma,
            "quality": self.quality,
        }


# ----------------------------------------------------------------------
# Response structures
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class PreviewResult:
    """Decoded ``(width, height, encoded raster)`` triple."""

    width: int
    height: int
    raster: bytes

    @classmethod
    def from_payload(cls, payload: Any) -> "PreviewResult":
        if isinstance(payload, Mapping):
            values: Sequence[Any] = (payload.get("width"), payload.get("height"), payload.get("data"))
        else:
            values = payload
        try:
            width, height, blob = values
        except (TypeError, ValueError) as exc:
            raise CommandValidationError("Preview payload must be (width, height, data)") from exc
        width = int(width)
        height = int(height)
        if width <= 0 or height <= 0:
            raise CommandValidationError(f"Invalid preview dimensions {width}x{height}")
        if isinstance(blob, str):
            try:
                raw = base64.b64decode(blob, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise CommandValidationError("Preview data is not valid base64") from exc
        elif isinstance(blob, (bytes, bytearray, memoryview)):
            raw = bytes(blob)
        else:
            raise CommandValidationError(f"Unsupported preview data type: {type(blob).__name__}")
        return cls(width=width, height=height, raster=raw)


@dataclass(frozen=True)
class PixelSample:
    x: int
    y: int
    r: float
    g: float
    b: float
    a: float

    @classmethod
    def from_payload(cls, x: int, y: int, payload: Any) -> "PixelSample":
        try:
            r, g, b, a = (float(value) for value in payload)
        except (TypeError, ValueError) as exc:
            raise CommandValidationError("Pixel payload must contain four numbers") from exc
        return cls(int(x), int(y), r, g, b, a)

    def readout(self) -> str:
        return (
            f"x:{self.x}, y:{self.y}  linear: R {self.r:.6f}  G {self.g:.6f}"
            f"  B {self.b:.6f}  A {self.a:.6f}"
        )


@dataclass(frozen=True)
class TransformPreset:
    label: str
    group: str = "General"
    src_space: str = "linear"
    src_tf: str = "linear"
    dst_space: str = "srgb"
    dst_tf: str = "srgb"
    size: int = 33

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TransformPreset":
        label = _require_text(payload.get("label"), "label")
        return cls(
            label=label,
            group=str(payload.get("group") or "General"),
            src_space=str(payload.get("src_space", "linear")),
            src_tf=str(payload.get("src_tf", "linear")),
            dst_space=str(payload.get("dst_space", "srgb")),
            dst_tf=str(payload.get("dst_tf", "srgb")),
            size=int(payload.get("size") or 33),
        )

    def lut_request(self) -> Lut3dRequest:
        return Lut3dRequest(
            src_space=self.src_space,
            src_tf=self.src_tf,
            dst_space=self.dst_space,
            dst_tf=self.dst_tf,
            size=self.size,
        )


@dataclass(frozen=True)
class OcioState:
    """Displays and views offered by the engine's OCIO config, with the active pair."""

    displays: Tuple[str, ...] = ()
    display: str = ""
    views: Tuple[str, ...] = ()
    view: str = ""

    @property
    def available(self) -> bool:
        return bool(self.displays)


def label_list(payload: Any) -> Tuple[str, ...]:
    """Non-empty string labels from a list payload; anything else yields ``()``."""

    if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
        return ()
    return tuple(str(item) for item in payload if isinstance(item, str) and item.strip())


@dataclass(frozen=True)
class SequenceSummary:
    success: int
    failure: int = 0
    dry_run: bool = False

    @property
    def total(self) -> int:
        return self.success + self.failure

    @classmethod
    def from_payload(cls, payload: Any, *, dry_run: bool) -> "SequenceSummary":
        if isinstance(payload, Mapping):
            return cls(int(payload.get("success", 0)), int(payload.get("failure", 0)), dry_run)
        return cls(int(payload), 0, dry_run)


@dataclass
class PreviewParameters:
    """Mutable parameter set read by the debounced scheduler at fire time."""

    exposure: float = 0.0
    gamma: float = 1.0
    use_state_lut: bool = True
    max_size: int = DEFAULT_PREVIEW_MAX_SIZE
    high_quality: bool = True
    lut_path: Optional[str] = None

    def open_request(self, path: str) -> OpenImageRequest:
        return OpenImageRequest(
            path=path,
            max_size=self.max_size,
            exposure=self.exposure,
            gamma=self.gamma,
            lut_path=self.lut_path,
            high_quality=self.high_quality,
        )

    def update_request(self) -> UpdatePreviewRequest:
        return UpdatePreviewRequest(
            max_size=self.max_size,
            exposure=self.exposure,
            gamma=self.gamma,
            lut_path=self.lut_path,
            use_state_lut=self.use_state_lut,
            high_quality=self.high_quality,
        )

    def snapshot(self) -> Tuple[float, float, bool]:
        return (self.exposure, self.gamma, self.use_state_lut)


__all__ = [
    "CommandRequest",
    "CommandValidationError",
    "DEFAULT_PREVIEW_MAX_SIZE",
    "DefaultTransformRequest",
    "ExportPreviewRequest",
    "Lut3dRequest",
    "DEFAULT_PROGRESS_INTERVAL_MS",
    "DEFAULT_PROGRESS_THRESHOLD",
    "NON_TRANSFORM_LABEL",
    "OcioDisplayViewRequest",
    "OcioState",
    "OcioViewsRequest",
    "OpenImageRequest",
    "PRORES_PROFILES",
    "PixelSample",
    "ProgressConfig",
    "PreviewParameters",
    "PreviewResult",
    "ProResExportRequest",
    "ProbePixelRequest",
    "ReadMetadataRequest",
    "SequenceFpsRequest",
    "SequenceSummary",
    "TransformPreset",
    "UpdatePreviewRequest",
    "label_list",
]
