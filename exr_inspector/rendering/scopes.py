"""Histogram and waveform scope rasterisation.

Scopes are rendered into ``(height, width, 4)`` ``uint8`` RGBA canvases with
numpy so they can be painted by any :class:`~exr_inspector.rendering.compositor.PaintTarget`
and inspected directly in tests.  Every draw starts from a cleared canvas and
depends only on its arguments; the histogram peak in particular is recomputed
on every call because the channel filter and scale change without new stats.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from exr_inspector.data import HISTOGRAM_BINS, ScopeStats, WaveformStats

from .compositor import ArrayPaintTarget, PaintTarget


LOGGER = logging.getLogger(__name__)

CHANNEL_COLORS: Dict[str, Tuple[int, int, int]] = {
    "r": (255, 0, 0),
    "g": (0, 128, 0),
    "b": (0, 0, 255),
}
WAVEFORM_SATURATION_COUNT = 10.0


class ScopeChannel(Enum):
    RGB = "rgb"
    R = "r"
    G = "g"
    B = "b"

    @property
    def channels(self) -> Tuple[str, ...]:
        if self is ScopeChannel.RGB:
            return ("r", "g", "b")
        return (self.value,)


@dataclass(frozen=True)
class ScopeViewConfig:
    channel_filter: ScopeChannel = ScopeChannel.RGB
    scale: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "channel_filter", ScopeChannel(self.channel_filter))
        if not float(self.scale) > 0:
            raise ValueError(f"Scope scale must be positive, got {self.scale!r}")
        object.__setattr__(self, "scale", float(self.scale))


def histogram_bar_heights(stats: ScopeStats, config: ScopeViewConfig, height: int) -> Dict[str, np.ndarray]:
    """Bar height in pixels for each bin of every rendered channel.

    Bins are normalised by the largest bin across the rendered channels,
    multiplied by ``config.scale`` and clamped to ``height``.
    """

    series = {
        name: stats.channel(name)
        for name in config.channel_filter.channels
        if stats.channel(name) is not None
    }
    if not series:
        return {}
    peak = max(float(np.max(counts)) for counts in series.values()) or 1.0
    heights = {}
    for name, counts in series.items():
        scaled = counts / peak * float(height) * config.scale
        heights[name] = np.rint(np.minimum(float(height), scaled)).astype(np.int32)
    return heights


def waveform_opacity(counts: np.ndarray | float, scale: float) -> np.ndarray:
    """Cell opacity ``min(1, count * scale / 10)``; empty bins stay transparent."""

    values = np.asarray(counts, dtype=np.float64)
    opacity = np.minimum(1.0, values * float(scale) / WAVEFORM_SATURATION_COUNT)
    return np.where(values > 0, opacity, 0.0)


class ScopeRenderer:
    """Draw histogram and waveform scopes onto their paint targets."""

    def __init__(
        self,
        *,
        histogram_size: Tuple[int, int] = (HISTOGRAM_BINS, 128),
        waveform_size: Tuple[int, int] = (256, 128),
        histogram_target: Optional[PaintTarget] = None,
        waveform_target: Optional[PaintTarget] = None,
    ) -> None:
        self.histogram_size = histogram_size
        self.waveform_size = waveform_size
        self.histogram_target: PaintTarget = histogram_target or ArrayPaintTarget()
        self.waveform_target: PaintTarget = waveform_target or ArrayPaintTarget()

    # ------------------------------------------------------------------
    # Histogram
    # ------------------------------------------------------------------
    def draw_histogram(self, stats: Optional[ScopeStats], config: ScopeViewConfig) -> Optional[np.ndarray]:
        if stats is None:
            return None
        width, height = self.histogram_size
        accumulator = np.zeros((height, width, 3), dtype=np.int32)
        coverage = np.zeros((height, width), dtype=bool)
        columns = (np.arange(HISTOGRAM_BINS) * width) // HISTOGRAM_BINS
        rows = np.arange(height, dtype=np.int32)[:, None]

        for name, bars in histogram_bar_heights(stats, config, height).items():
            mask = rows >= (height - bars[None, :])
            layer = np.zeros((width, height), dtype=bool)
            np.logical_or.at(layer, columns, mask.T)
            layer = layer.T
            # Additive blending: overlapping channels brighten.
            accumulator += layer[:, :, None] * np.asarray(CHANNEL_COLORS[name], dtype=np.int32)
            coverage |= layer

        canvas = np.zeros((height, width, 4), dtype=np.uint8)
        canvas[:, :, :3] = np.clip(accumulator, 0, 255).astype(np.uint8)
        canvas[:, :, 3] = np.where(coverage, 255, 0).astype(np.uint8)
        self.histogram_target.paint(canvas)
        return canvas

    # ------------------------------------------------------------------
    # Waveform
    # ------------------------------------------------------------------
    def draw_waveform(self, waveform: Optional[WaveformStats], config: ScopeViewConfig) -> Optional[np.ndarray]:
        if waveform is None:
            return None
        width, height = self.waveform_size
        x_bins, y_bins = waveform.x_bins, waveform.y_bins
        column_bins = (np.arange(width) * x_bins) // width
        # Canvas row 0 is the top; waveform bin y == 0 is the bottom.
        row_bins = ((height - 1 - np.arange(height)) * y_bins) // height

        premultiplied = np.zeros((height, width, 3), dtype=np.float64)
        alpha = np.zeros((height, width), dtype=np.float64)
        for name in config.channel_filter.channels:
            grid = waveform.grid(name)
            if grid is None:
                continue
            cell_opacity = waveform_opacity(grid, config.scale)
            pixel_opacity = cell_opacity[column_bins[None, :], row_bins[:, None]]
            color = np.asarray(CHANNEL_COLORS[name], dtype=np.float64)
            premultiplied = color * pixel_opacity[:, :, None] + premultiplied * (1.0 - pixel_opacity[:, :, None])
            alpha = pixel_opacity + alpha * (1.0 - pixel_opacity)

        canvas = np.zeros((height, width, 4), dtype=np.uint8)
        visible = alpha > 0
        straight = np.zeros_like(premultiplied)
        straight[visible] = premultiplied[visible] / alpha[visible][:, None]
        canvas[:, :, :3] = np.clip(np.rint(straight), 0, 255).astype(np.uint8)
        canvas[:, :, 3] = np.clip(np.rint(alpha * 255.0), 0, 255).astype(np.uint8)
        self.waveform_target.paint(canvas)
        return canvas


__all__ = [
    "CHANNEL_COLORS",
    "ScopeChannel",
    "ScopeRenderer",
    "ScopeViewConfig",
    "histogram_bar_heights",
    "waveform_opacity",
]
