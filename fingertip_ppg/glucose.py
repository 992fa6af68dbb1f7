"""
Glucose *placeholder*.

WARNING: this is not a measurement.  The value is a random draw from a band
chosen only by the heart-rate estimate; no optical information beyond the
heart rate is used and the result has no physiological meaning.  It exists
only so that the session record keeps a ``glucose_estimate`` field and must be
shown as a non-diagnostic placeholder wherever it is displayed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

NON_DIAGNOSTIC_NOTE = "Random placeholder derived from heart rate only; not a glucose measurement."

# Inclusive (low, high) bands in mg/dL, chosen by heart rate.
HIGH_BAND = (126, 160)
MID_BAND = (80, 125)
LOW_BAND = (60, 79)


class GlucoseCategory(str, Enum):
    LOW = "Low"
    NORMAL = "Normal"
    PREDIABETES = "Prediabetes"
    DIABETES = "Diabetes"


@dataclass(frozen=True)
class GlucoseEstimate:
    value: int
    category: GlucoseCategory
    heart_rate: int
    placeholder: bool = True
    note: str = NON_DIAGNOSTIC_NOTE


def categorize(value: int) -> GlucoseCategory:
    """Bucket a mg/dL value: <70 low, 70–99 normal, 100–125 prediabetes, ≥126 diabetes."""
    if value < 70:
        return GlucoseCategory.LOW
    if value < 100:
        return GlucoseCategory.NORMAL
    if value < 126:
        return GlucoseCategory.PREDIABETES
    return GlucoseCategory.DIABETES


def band_for(heart_rate: int) -> tuple[int, int]:
    if heart_rate > 120:
        return HIGH_BAND
    if heart_rate < 60:
        return LOW_BAND
    return MID_BAND


def estimate_glucose(
    heart_rate: Optional[int],
    rng: Optional[np.random.Generator] = None,
) -> Optional[GlucoseEstimate]:
    """
    Draw a placeholder glucose value for *heart_rate*.

    Returns ``None`` when no heart rate is available.  Pass a seeded
    ``numpy.random.Generator`` for reproducible draws.
    """
    if heart_rate is None:
        return None
    rng = rng if rng is not None else np.random.default_rng()
    low, high = band_for(heart_rate)
    value = int(rng.integers(low, high + 1))
    return GlucoseEstimate(value=value, category=categorize(value), heart_rate=heart_rate)
