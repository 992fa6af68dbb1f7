"""
Runtime configuration for a reading session.

All fields may be changed while a session is running; the session reads the
config at the start of every tick, so a change takes effect on the next frame.
"""

from __future__ import annotations

from dataclasses import dataclass


ROI_SIZE_RANGE = (20, 100)
THRESHOLD_FACTOR_RANGE = (0.1, 1.0)


@dataclass
class AnalyzerConfig:
    """
    Tunable parameters of the analysis pipeline.

    Parameters
    ----------
    roi_size:
        Side length (px) of the centred square sampled on every frame.
    threshold_factor:
        Multiplier of the standard deviation added to the mean to form the
        peak detector's dynamic threshold.
    band_pass_enabled:
        Zero spectrum bins outside ``[band_low_hz, band_high_hz]``.
    session_duration_seconds:
        Length of a reading before the session finishes on its own.
    buffer_capacity:
        Maximum number of samples kept in the rolling buffer.
    sample_rate:
        Assumed sampling rate (frames per second) of the spectrum.
    min_samples:
        Buffer length required before a heart rate is estimated.
    min_peak_distance:
        Minimum index gap between two accepted peaks.
    """

    roi_size: int = 50
    threshold_factor: float = 0.5
    band_pass_enabled: bool = True
    session_duration_seconds: int = 45
    buffer_capacity: int = 150
    sample_rate: float = 60.0
    min_samples: int = 30
    min_peak_distance: int = 8
    band_low_hz: float = 0.7
    band_high_hz: float = 3.0
    pulse_duration_ms: float = 200.0

    def validate(self) -> "AnalyzerConfig":
        """Raise ``ValueError`` if any field is out of range; return self."""
        lo, hi = ROI_SIZE_RANGE
        if not lo <= self.roi_size <= hi:
            raise ValueError(f"roi_size must be in [{lo}, {hi}], got {self.roi_size}")
        lo, hi = THRESHOLD_FACTOR_RANGE
        if not lo <= self.threshold_factor <= hi:
            raise ValueError(
                f"threshold_factor must be in [{lo}, {hi}], got {self.threshold_factor}"
            )
        if self.session_duration_seconds <= 0:
            raise ValueError("session_duration_seconds must be positive")
        if self.buffer_capacity < 1:
            raise ValueError("buffer_capacity must be at least 1")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.min_samples < 1:
            raise ValueError("min_samples must be at least 1")
        if self.min_peak_distance < 1:
            raise ValueError("min_peak_distance must be at least 1")
        if not 0 <= self.band_low_hz < self.band_high_hz:
            raise ValueError("band_low_hz must be >= 0 and below band_high_hz")
        return self
