"""
Unit tests for the HRV / rhythm classifier.
Run with:  pytest tests/test_hrv.py
"""

from __future__ import annotations

import numpy as np
import pytest

from fingertip_ppg.heart_rate import compute_bpm
from fingertip_ppg.hrv import Condition, StressLevel, classify, peak_intervals
from fingertip_ppg.peak_detector import detect_peaks

FPS = 60.0


def _timestamps(n: int = 200) -> np.ndarray:
    return np.arange(n) * 1000.0 / FPS


def _pulses_at(positions, n: int = 200) -> np.ndarray:
    """Baseline with narrow Gaussian bumps centred on *positions*."""
    idx = np.arange(n)
    signal = np.full(n, 0.5)
    for p in positions:
        signal += 0.1 * np.exp(-0.5 * ((idx - p) / 2.0) ** 2)
    return signal


class TestRhythm:

    def test_normal_rate_regular_rhythm(self):
        report = classify(72, _timestamps(), [10, 60, 110, 160])
        assert report.condition is None
        assert report.hrv == 0
        assert report.stress is StressLevel.NORMAL
        assert report.mean_interval == pytest.approx(50 * 1000 / FPS)

    def test_bradycardia(self):
        assert classify(50, _timestamps(), [10, 60, 110]).condition is Condition.BRADYCARDIA

    def test_tachycardia(self):
        assert classify(120, _timestamps(), [10, 60, 110]).condition is Condition.TACHYCARDIA

    def test_rate_label_without_enough_peaks(self):
        report = classify(55, _timestamps(), [10, 60])
        assert report.condition is Condition.BRADYCARDIA
        assert report.hrv is None
        assert report.stress is None

    def test_no_rate_no_label(self):
        assert classify(None, _timestamps(), []).condition is None


class TestVariability:

    def test_irregular_intervals_override_rate_label(self):
        # Intervals of 30, 60 and 15 samples: 500, 1000, 250 ms.
        peaks = [10, 40, 100, 115]
        for bpm in (50, 72, 150):
            report = classify(bpm, _timestamps(), peaks)
            assert report.condition is Condition.POSSIBLE_ARRHYTHMIA

    def test_hrv_and_high_stress(self):
        report = classify(72, _timestamps(), [10, 40, 100, 115])
        expected_std = float(np.std([500.0, 1000.0, 250.0]))
        assert report.std_interval == pytest.approx(expected_std)
        assert report.hrv == round(expected_std)
        assert report.stress is StressLevel.HIGH

    def test_rmssd(self):
        report = classify(72, _timestamps(), [10, 40, 100, 115])
        assert report.rmssd == pytest.approx(np.sqrt(np.mean(np.array([500.0, -750.0]) ** 2)))

    def test_report_is_labelled_heuristic(self):
        report = classify(72, _timestamps(), [10, 60, 110])
        assert report.heuristic is True
        assert "not a medical diagnosis" in report.disclaimer

    def test_peak_intervals(self):
        np.testing.assert_allclose(peak_intervals([0.0, 10.0, 25.0, 45.0], [0, 2, 3]), [25.0, 20.0])

    def test_irregular_signal_end_to_end(self):
        """Detected irregular pulses are flagged whatever the rate says."""
        values = _pulses_at([20, 45, 100, 120, 170])
        timestamps = _timestamps()
        peaks = detect_peaks(values)
        assert peaks == [20, 45, 100, 120, 170]
        bpm = compute_bpm(timestamps, peaks)
        report = classify(bpm, timestamps, peaks)
        assert report.condition is Condition.POSSIBLE_ARRHYTHMIA
