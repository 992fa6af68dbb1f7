"""
Local-maximum peak detector with a dynamic threshold.

Algorithm
---------
1. ``threshold = mean(arr) + std(arr) * threshold_factor``.
2. Every index ``i`` in ``[2, len - 3]`` with ``arr[i] > threshold`` and
   ``arr[i]`` strictly above both neighbours is a candidate.
3. A candidate is accepted only if it lies at least ``min_distance`` indices
   after the previously accepted peak, so one pulse is not counted twice.

The scan is a plain left-to-right loop: the same input always yields the same
indices.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from fingertip_ppg.config import THRESHOLD_FACTOR_RANGE

MIN_PEAK_DISTANCE = 8
EDGE_MARGIN = 2


def dynamic_threshold(arr: np.ndarray, threshold_factor: float) -> float:
    return float(np.mean(arr) + np.std(arr) * threshold_factor)


def detect_peaks(
    values: Sequence[float] | np.ndarray,
    threshold_factor: float = 0.5,
    min_distance: int = MIN_PEAK_DISTANCE,
) -> list[int]:
    """
    Return the ordered buffer indices of accepted peaks in *values*.

    Parameters
    ----------
    values:
        The buffered sample values.
    threshold_factor:
        Standard-deviation multiplier, must lie in [0.1, 1.0].
    min_distance:
        Minimum gap (in samples) between two accepted peaks.
    """
    lo, hi = THRESHOLD_FACTOR_RANGE
    if not lo <= threshold_factor <= hi:
        raise ValueError(f"threshold_factor must be in [{lo}, {hi}], got {threshold_factor}")
    if min_distance < 1:
        raise ValueError("min_distance must be at least 1")

    arr = np.asarray(values, dtype=np.float64)
    if arr.size < 2 * EDGE_MARGIN + 1:
        return []

    threshold = dynamic_threshold(arr, threshold_factor)
    peaks: list[int] = []
    for i in range(EDGE_MARGIN, arr.size - EDGE_MARGIN):
        value = arr[i]
        if value <= threshold or value <= arr[i - 1] or value <= arr[i + 1]:
            continue
        if peaks and i - peaks[-1] < min_distance:
            continue
        peaks.append(i)
    return peaks

