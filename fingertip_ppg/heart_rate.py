"""
Peak-count heart-rate estimator.

``bpm = round(peak_count * 60 / time_span_seconds)``, clamped to 40 – 180.

An estimate is only produced when the buffer holds at least ``min_samples``
samples, at least two peaks were found and the buffer spans a positive amount
of time.  Otherwise the previous estimate is kept as-is.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from fingertip_ppg.errors import InsufficientData
from fingertip_ppg.signal_buffer import BufferSnapshot

logger = logging.getLogger(__name__)

BPM_MIN = 40
BPM_MAX = 180
MIN_SAMPLES = 30

PulseListener = Callable[[float, int], None]


def clamp_bpm(bpm: float) -> int:
    return int(max(BPM_MIN, min(BPM_MAX, bpm)))


def compute_bpm(
    timestamps: Sequence[float],
    peaks: Sequence[int],
    min_samples: int = MIN_SAMPLES,
) -> int:
    """
    Return the bounded BPM for a buffer with *timestamps* (ms) and *peaks*.

    Raises
    ------
    InsufficientData
        When any precondition does not hold.
    """
    if len(timestamps) < min_samples:
        raise InsufficientData(f"{len(timestamps)} samples buffered, need {min_samples}")
    if len(peaks) < 2:
        raise InsufficientData(f"{len(peaks)} peaks detected, need 2")
    span_seconds = float(timestamps[-1] - timestamps[0]) / 1000.0
    if span_seconds <= 0:
        raise InsufficientData("buffer spans no time")
    raw_bpm = round(len(peaks) * 60.0 / span_seconds)
    return clamp_bpm(raw_bpm)


class HeartRateEstimator:
    """
    Keeps the latest heart-rate estimate and emits pulse events.

    Parameters
    ----------
    min_samples:
        Minimum buffer length before an estimate is attempted.
    pulse_duration_ms:
        How long :meth:`pulse_active` stays true after a pulse event.
    """

    def __init__(self, min_samples: int = MIN_SAMPLES, pulse_duration_ms: float = 200.0) -> None:
        self.min_samples = min_samples
        self.pulse_duration_ms = pulse_duration_ms
        self._last_bpm: Optional[int] = None
        self._last_pulse_at: Optional[float] = None
        self._listeners: List[PulseListener] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_listener(self, listener: PulseListener) -> None:
        """Register ``listener(timestamp_ms, bpm)`` to be called on every pulse."""
        self._listeners.append(listener)

    def update(self, snapshot: BufferSnapshot, peaks: Sequence[int]) -> Optional[int]:
        """
        Re-estimate from *snapshot* and *peaks*.

        Returns the new estimate, or ``None`` when the preconditions fail (in
        which case :attr:`last_bpm` is left unchanged).
        """
        try:
            bpm = compute_bpm(snapshot.timestamps, peaks, self.min_samples)
        except InsufficientData as exc:
            logger.debug("Heart rate withheld: %s", exc)
            return None

        if bpm != self._last_bpm:
            logger.debug("Heart rate %d BPM from %d peaks", bpm, len(peaks))
        self._last_bpm = bpm
        self._emit_pulse(snapshot.latest.timestamp, bpm)
        return bpm

    def pulse_active(self, now: float) -> bool:
        """True while *now* (ms) is within ``pulse_duration_ms`` of the last pulse."""
        if self._last_pulse_at is None:
            return False
        return 0 <= now - self._last_pulse_at < self.pulse_duration_ms

    def reset(self) -> None:
        self._last_bpm = None
        self._last_pulse_at = None

    @property
    def last_bpm(self) -> Optional[int]:
        return self._last_bpm

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _emit_pulse(self, timestamp: float, bpm: int) -> None:
        self._last_pulse_at = timestamp
        for listener in self._listeners:
            try:
                listener(timestamp, bpm)
            except Exception:
                logger.exception("Pulse listener %r failed.", listener)
