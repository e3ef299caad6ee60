from __future__ import annotations

import numpy as np

from exr_inspector.data import HISTOGRAM_BINS, ScopeStats, WaveformStats


def test_histogram_flat_keys() -> None:
    stats = ScopeStats.from_payload({"hist_r": [1] * HISTOGRAM_BINS, "hist_g": [2] * HISTOGRAM_BINS})

    assert stats is not None
    assert stats.channel("r").sum() == HISTOGRAM_BINS
    assert stats.channel("g")[0] == 2
    assert stats.channel("b") is None


def test_histogram_nested_mapping_and_malformed_channel() -> None:
    stats = ScopeStats.from_payload(
        {"histogram": {"r": [0] * HISTOGRAM_BINS, "g": [1, 2, 3], "b": [float("inf")] * HISTOGRAM_BINS}}
    )
    assert set(stats.histogram) == {"r"}


def test_histogram_counts_are_read_only() -> None:
    stats = ScopeStats.from_payload({"hist_r": list(range(HISTOGRAM_BINS))})
    assert not stats.channel("r").flags.writeable


def test_non_mapping_payloads_are_ignored() -> None:
    assert ScopeStats.from_payload([1, 2, 3]) is None
    assert WaveformStats.from_payload("waveform") is None
    assert WaveformStats.from_payload({"r": [1]}) is None


def test_waveform_grid_layout() -> None:
    counts = list(range(6))
    waveform = WaveformStats.from_payload({"xBins": 2, "yBins": 3, "r": counts, "g": [0] * 5})

    grid = waveform.grid("r")
    assert grid.shape == (2, 3)
    # Index ``x * y_bins + y``.
    assert grid[1, 0] == 3
    assert grid[0, 2] == 2
    assert waveform.grid("g") is None


def test_waveform_per_channel_mapping() -> None:
    waveform = WaveformStats.from_payload(
        {"x_bins": 1, "y_bins": 2, "per_channel": {"b": np.array([4, 5])}}
    )
    assert waveform.grid("b").tolist() == [[4.0, 5.0]]
