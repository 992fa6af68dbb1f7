"""
Coarse signal-quality assessment.

Two independent checks:

* :class:`FingerDetector` looks at the ROI pixels.  A fingertip covering the
  lens gives a dark, uniform, red-dominated patch.
* :func:`assess_quality` looks at the buffered signal: the share of its
  spectral power (``scipy.signal.periodogram``) that falls inside the pulse
  band.  A clean pulse concentrates its energy there.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np
from scipy.signal import periodogram

from fingertip_ppg.spectrum import BAND_HIGH_HZ, BAND_LOW_HZ

GOOD_RATIO = 0.5
FAIR_RATIO = 0.25


class SignalQuality(str, Enum):
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    NO_CONTACT = "No contact"


@dataclass(frozen=True)
class QualityReport:
    level: SignalQuality
    band_power_ratio: float
    finger_present: bool


class FingerDetector:
    """
    Heuristic check: is the lens covered by a fingertip?

    Parameters
    ----------
    brightness_threshold:
        Maximum mean brightness (0 – 255) of the patch.  With the torch on a
        covered lens is still far dimmer than an open scene.
    variance_threshold:
        Maximum spatial variance of the red channel.
    red_dominance:
        Minimum ``mean_red / mean_green``.
    """

    def __init__(
        self,
        brightness_threshold: float = 200.0,
        variance_threshold: float = 800.0,
        red_dominance: float = 1.05,
    ) -> None:
        self.brightness_threshold = brightness_threshold
        self.variance_threshold = variance_threshold
        self.red_dominance = red_dominance

    def is_finger(self, patch: np.ndarray) -> bool:
        """
        Return *True* if *patch* looks like a fingertip on the lens.

        Parameters
        ----------
        patch:
            RGBA image array (H × W × 4, uint8).
        """
        if patch.size == 0:
            return False
        r_ch = patch[:, :, 0].astype(np.float64)
        g_ch = patch[:, :, 1].astype(np.float64)
        b_ch = patch[:, :, 2].astype(np.float64)

        mean_r = float(r_ch.mean())
        mean_g = float(g_ch.mean())
        brightness = (mean_r + mean_g + float(b_ch.mean())) / 3.0
        variance = float(r_ch.var())
        red_ratio = mean_r / (mean_g + 1e-6)

        dark_enough    = brightness < self.brightness_threshold
        uniform_enough = variance < self.variance_threshold
        skin_tone      = red_ratio >= self.red_dominance

        return dark_enough and uniform_enough and skin_tone


def band_power_ratio(
    values: Sequence[float] | np.ndarray,
    sample_rate: float,
    low_hz: float = BAND_LOW_HZ,
    high_hz: float = BAND_HIGH_HZ,
) -> float:
    """Fraction (0 – 1) of non-DC power inside ``[low_hz, high_hz]``."""
    signal = np.asarray(values, dtype=np.float64)
    if signal.size < 2 or np.ptp(signal) == 0:
        return 0.0
    freqs, power = periodogram(signal - signal.mean(), fs=sample_rate)
    total = float(power[1:].sum())
    if total <= 0:
        return 0.0
    band_mask = (freqs >= low_hz) & (freqs <= high_hz)
    return float(power[band_mask].sum() / total)


def assess_quality(
    values: Sequence[float] | np.ndarray,
    sample_rate: float,
    finger_present: bool = True,
    min_samples: int = 30,
) -> QualityReport:
    """Grade the buffered signal as good / fair / poor, or no contact."""
    if not finger_present:
        return QualityReport(SignalQuality.NO_CONTACT, 0.0, False)
    if len(values) < min_samples:
        return QualityReport(SignalQuality.POOR, 0.0, True)

    ratio = band_power_ratio(values, sample_rate)
    if ratio >= GOOD_RATIO:
        level = SignalQuality.GOOD
    elif ratio >= FAIR_RATIO:
        level = SignalQuality.FAIR
    else:
        level = SignalQuality.POOR
    return QualityReport(level, ratio, True)
