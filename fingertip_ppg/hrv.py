"""
Heart-rate variability and rhythm heuristics.

Everything here is a coarse screening heuristic derived from peak timing in a
consumer camera signal.  None of the labels is a diagnosis.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

DISCLAIMER = "Heuristic estimate from camera pulse timing, not a medical diagnosis."

BRADYCARDIA_BELOW = 60
TACHYCARDIA_ABOVE = 100
ARRHYTHMIA_RATIO = 0.2
HIGH_STRESS_STD = 100.0


class Condition(str, Enum):
    BRADYCARDIA = "Bradycardia"
    TACHYCARDIA = "Tachycardia"
    POSSIBLE_ARRHYTHMIA = "Possible Arrhythmia"


class StressLevel(str, Enum):
    NORMAL = "Normal"
    HIGH = "High"


@dataclass(frozen=True)
class HrvReport:
    """
    Outcome of :func:`classify`.

    Interval statistics are in the unit of the sample timestamps
    (milliseconds throughout this package) and are ``None`` when fewer than
    three peaks were available.
    """

    condition: Optional[Condition] = None
    hrv: Optional[int] = None
    stress: Optional[StressLevel] = None
    mean_interval: Optional[float] = None
    std_interval: Optional[float] = None
    rmssd: Optional[float] = None
    heuristic: bool = True

    @property
    def disclaimer(self) -> str:
        return DISCLAIMER


def peak_intervals(timestamps: Sequence[float], peaks: Sequence[int]) -> np.ndarray:
    """Time between consecutive peaks."""
    peak_times = np.asarray(timestamps, dtype=np.float64)[np.asarray(peaks, dtype=np.intp)]
    return np.diff(peak_times)


def rhythm_condition(bpm: Optional[int]) -> Optional[Condition]:
    if bpm is None:
        return None
    if bpm < BRADYCARDIA_BELOW:
        return Condition.BRADYCARDIA
    if bpm > TACHYCARDIA_ABOVE:
        return Condition.TACHYCARDIA
    return None


def classify(
    bpm: Optional[int],
    timestamps: Sequence[float],
    peaks: Sequence[int],
) -> HrvReport:
    """
    Derive rhythm condition, HRV and stress tier.

    Parameters
    ----------
    bpm:
        The bounded heart-rate estimate for the same buffer, if any.
    timestamps:
        Sample timestamps of the buffer the peaks were detected in.
    peaks:
        Accepted peak indices into *timestamps*.
    """
    condition = rhythm_condition(bpm)
    if len(peaks) < 3:
        return HrvReport(condition=condition)

    intervals = peak_intervals(timestamps, peaks)
    mean_interval = float(np.mean(intervals))
    std_interval = float(np.std(intervals))
    rmssd = float(np.sqrt(np.mean(np.diff(intervals) ** 2)))

    # Irregular spacing outranks the rate-based label.
    if std_interval > ARRHYTHMIA_RATIO * mean_interval:
        condition = Condition.POSSIBLE_ARRHYTHMIA

    stress = StressLevel.HIGH if std_interval > HIGH_STRESS_STD else StressLevel.NORMAL
    return HrvReport(
        condition=condition,
        hrv=round(std_interval),
        stress=stress,
        mean_interval=mean_interval,
        std_interval=std_interval,
        rmssd=rmssd,
    )
