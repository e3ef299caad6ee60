"""Dual-buffer preview compositor.

The compositor keeps the current and the previously decoded preview so the
user can flip between them (A/B compare).  Channel selection happens entirely
client side: switching to the alpha view or toggling compare re-renders the
cached buffers without asking the backend for anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Protocol

import numpy as np

from exr_inspector.data import decode_raster
from exr_inspector.data.raster import RasterSource


LOGGER = logging.getLogger(__name__)


class ChannelMode(Enum):
    RGB = "rgb"
    ALPHA = "alpha"

    @property
    def label(self) -> str:
        return "RGB" if self is ChannelMode.RGB else "Alpha"


class PaintTarget(Protocol):
    """Anything able to display an RGBA ``uint8`` array."""

    def paint(self, pixels: np.ndarray) -> None:
        ...


class ArrayPaintTarget:
    """Paint target that keeps the last painted array.  Used headless and in tests."""

    def __init__(self) -> None:
        self.pixels: Optional[np.ndarray] = None
        self.paint_count = 0

    def paint(self, pixels: np.ndarray) -> None:
        self.pixels = pixels
        self.paint_count += 1


@dataclass(frozen=True)
class PreviewFrame:
    width: int
    height: int
    pixels: np.ndarray


@dataclass(frozen=True)
class PreviewState:
    current: Optional[PreviewFrame] = None
    previous: Optional[PreviewFrame] = None
    channel_mode: ChannelMode = ChannelMode.RGB
    compare_active: bool = False

    @property
    def width(self) -> int:
        return self.current.width if self.current is not None else 0

    @property
    def height(self) -> int:
        return self.current.height if self.current is not None else 0

    @property
    def current_raster(self) -> Optional[np.ndarray]:
        return self.current.pixels if self.current is not None else None

    @property
    def previous_raster(self) -> Optional[np.ndarray]:
        return self.previous.pixels if self.previous is not None else None

    @property
    def displayed(self) -> Optional[PreviewFrame]:
        if self.compare_active and self.previous is not None:
            return self.previous
        return self.current


def apply_channel_mode(pixels: np.ndarray, mode: ChannelMode) -> np.ndarray:
    """Return a copy of ``pixels`` transformed for ``mode``.

    The alpha view writes each pixel's alpha into R, G and B and forces the
    alpha channel itself to fully opaque.
    """

    if mode is ChannelMode.RGB:
        return pixels.copy()
    out = np.empty_like(pixels)
    out[:, :, 0] = pixels[:, :, 3]
    out[:, :, 1] = pixels[:, :, 3]
    out[:, :, 2] = pixels[:, :, 3]
    out[:, :, 3] = 255
    return out


class PreviewCompositor:
    """Owns :class:`PreviewState` and paints it onto a target."""

    def __init__(
        self,
        target: Optional[PaintTarget] = None,
        *,
        status_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._target: PaintTarget = target if target is not None else ArrayPaintTarget()
        self._status_sink = status_sink
        self._state = PreviewState()
        self.status_text = ""

    @property
    def state(self) -> PreviewState:
        return self._state

    @property
    def target(self) -> PaintTarget:
        return self._target

    def set_target(self, target: PaintTarget) -> None:
        self._target = target
        self.render()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------
    def on_decode_success(self, width: int, height: int, raster_source: RasterSource) -> PreviewState:
        """Install a freshly decoded preview and render it.

        Decoding happens before any state change, so a malformed raster raises
        :class:`~exr_inspector.data.RasterDecodeError` and leaves the previous
        state intact.
        """

        pixels = decode_raster(raster_source, expected_size=(width, height))
        pixels.setflags(write=False)
        frame = PreviewFrame(int(width), int(height), pixels)
        self._state = replace(
            self._state,
            current=frame,
            previous=self._state.current,
            compare_active=False,
        )
        LOGGER.debug("Preview buffer rotated: %sx%s", width, height)
        self.render()
        return self._state

    def set_channel_mode(self, mode: ChannelMode) -> None:
        mode = ChannelMode(mode)
        if mode is self._state.channel_mode:
            return
        self._state = replace(self._state, channel_mode=mode)
        self.render()

    def toggle_compare(self) -> bool:
        """Flip A/B compare.  Without a previous buffer this does nothing."""

        if self._state.previous is None:
            return False
        self._state = replace(self._state, compare_active=not self._state.compare_active)
        self.render()
        return self._state.compare_active

    def clear(self) -> None:
        self._state = PreviewState(channel_mode=self._state.channel_mode)
        self._publish_status("")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render(self) -> Optional[np.ndarray]:
        frame = self._state.displayed
        if frame is None:
            return None
        pixels = apply_channel_mode(frame.pixels, self._state.channel_mode)
        self._target.paint(pixels)
        self._publish_status(self._format_status(frame))
        return pixels

    def _format_status(self, frame: PreviewFrame) -> str:
        view = "B (previous)" if self._state.compare_active else "A (current)"
        return (
            f"preview: {frame.width}x{frame.height} | channel: {self._state.channel_mode.label}"
            f" | A/B: {view}"
        )

    def _publish_status(self, text: str) -> None:
        self.status_text = text
        if self._status_sink is not None:
            self._status_sink(text)


__all__ = [
    "ArrayPaintTarget",
    "ChannelMode",
    "PaintTarget",
    "PreviewCompositor",
    "PreviewFrame",
    "PreviewState",
    "apply_channel_mode",
]
