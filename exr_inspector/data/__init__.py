"""Data layer: raster decoding, scope statistics and attribute tracking."""

from .attributes import AttributeChanges, AttributeRow, AttributeTable, RowState
from .raster import RasterDecodeError, decode_raster
from .stats import HISTOGRAM_BINS, SCOPE_CHANNELS, ScopeStats, WaveformStats

__all__ = [
    "AttributeChanges",
    "AttributeRow",
    "AttributeTable",
    "HISTOGRAM_BINS",
    "RasterDecodeError",
    "RowState",
    "SCOPE_CHANNELS",
    "ScopeStats",
    "WaveformStats",
    "decode_raster",
]
