"""Scope statistics received from the backend.

Both structures are immutable snapshots.  Parsing is lenient: a channel whose
payload is missing or has the wrong length is left out instead of failing the
whole update, so the renderer simply skips it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

import numpy as np


LOGGER = logging.getLogger(__name__)

HISTOGRAM_BINS = 256
SCOPE_CHANNELS = ("r", "g", "b")


def _as_counts(values: Any, expected: int) -> Optional[np.ndarray]:
    if values is None:
        return None
    try:
        array = np.asarray(values, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None
    if array.size != expected or not np.all(np.isfinite(array)):
        return None
    counts = np.clip(array, 0.0, None)
    counts.setflags(write=False)
    return counts


@dataclass(frozen=True)
class ScopeStats:
    """Per-channel 256 bin histograms."""

    histogram: Mapping[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "histogram", MappingProxyType(dict(self.histogram)))

    def channel(self, name: str) -> Optional[np.ndarray]:
        return self.histogram.get(name)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["ScopeStats"]:
        """Build stats from ``{"hist_r": [...], ...}`` or ``{"histogram": {"r": [...]}}``."""

        if not isinstance(payload, Mapping):
            LOGGER.debug("Ignoring histogram payload of type %s", type(payload).__name__)
            return None
        nested = payload.get("histogram")
        histogram = {}
        for channel in SCOPE_CHANNELS:
            if isinstance(nested, Mapping):
                raw = nested.get(channel)
            else:
                raw = payload.get(f"hist_{channel}")
            counts = _as_counts(raw, HISTOGRAM_BINS)
            if counts is None:
                if raw is not None:
                    LOGGER.debug("Dropping malformed histogram channel %s", channel)
                continue
            histogram[channel] = counts
        return cls(histogram)


@dataclass(frozen=True)
class WaveformStats:
    """Binned waveform; index ``x * y_bins + y`` with ``y == 0`` at the bottom."""

    x_bins: int
    y_bins: int
    per_channel: Mapping[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "per_channel", MappingProxyType(dict(self.per_channel)))

    def grid(self, channel: str) -> Optional[np.ndarray]:
        """Return the counts for ``channel`` shaped ``(x_bins, y_bins)``."""

        counts = self.per_channel.get(channel)
        if counts is None:
            return None
        return counts.reshape(self.x_bins, self.y_bins)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["WaveformStats"]:
        if not isinstance(payload, Mapping):
            return None
        try:
            x_bins = int(payload.get("x_bins", payload.get("xBins")))
            y_bins = int(payload.get("y_bins", payload.get("yBins")))
        except (TypeError, ValueError):
            LOGGER.debug("Waveform payload is missing its bin counts")
            return None
        if x_bins <= 0 or y_bins <= 0:
            return None
        source = payload.get("per_channel")
        if not isinstance(source, Mapping):
            source = payload
        per_channel = {}
        for channel in SCOPE_CHANNELS:
            counts = _as_counts(source.get(channel), x_bins * y_bins)
            if counts is not None:
                per_channel[channel] = counts
        return cls(x_bins, y_bins, per_channel)


__all__ = ["HISTOGRAM_BINS", "SCOPE_CHANNELS", "ScopeStats", "WaveformStats"]
