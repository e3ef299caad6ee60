"""Client side rendering: preview compositing and scope rasterisation."""

from .compositor import (
    ArrayPaintTarget,
    ChannelMode,
    PaintTarget,
    PreviewCompositor,
    PreviewFrame,
    PreviewState,
    apply_channel_mode,
)
from .scopes import ScopeChannel, ScopeRenderer, ScopeViewConfig, histogram_bar_heights, waveform_opacity

__all__ = [
    "ArrayPaintTarget",
    "ChannelMode",
    "PaintTarget",
    "PreviewCompositor",
    "PreviewFrame",
    "PreviewState",
    "ScopeChannel",
    "ScopeRenderer",
    "ScopeViewConfig",
    "apply_channel_mode",
    "histogram_bar_heights",
    "waveform_opacity",
]
