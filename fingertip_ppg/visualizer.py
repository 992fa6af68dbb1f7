"""
Real-time overlay sink.

Draws the following elements onto each BGR video frame:
  • The sampled region-of-interest rectangle.
  • Heart-rate readout that flashes on every pulse event.
  • HRV, rhythm condition and stress tier, marked as heuristics.
  • Session countdown and signal-quality label.
  • A waveform strip of the buffered samples with detected peaks.
  • A spectrum magnitude panel.

The visualiser only reads :class:`~fingertip_ppg.session.TickUpdate` objects;
it never feeds anything back into the session.
"""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from fingertip_ppg.frame_sampler import Region
from fingertip_ppg.quality import SignalQuality
from fingertip_ppg.session import TickUpdate


# ---------------------------------------------------------------------------
# Colour palette (BGR)
# ---------------------------------------------------------------------------
_GREEN  = (0, 220,  80)
_RED    = (0,  50, 220)
_YELLOW = (0, 210, 210)
_WHITE  = (255, 255, 255)
_BLACK  = (0, 0, 0)
_CYAN   = (220, 200,  0)
_PURPLE = (150, 100, 180)
_DARK   = (30, 30, 30)

_QUALITY_COLOURS = {
    SignalQuality.GOOD: _GREEN,
    SignalQuality.FAIR: _YELLOW,
    SignalQuality.POOR: _RED,
    SignalQuality.NO_CONTACT: _RED,
}


class Visualizer:
    """
    Draws the reading UI onto OpenCV frames in-place.

    Parameters
    ----------
    waveform_height:
        Pixel height of the waveform panel at the bottom of the frame.
    show_spectrum:
        Whether to draw the spectrum panel on the right.
    """

    def __init__(self, waveform_height: int = 80, show_spectrum: bool = True) -> None:
        self.waveform_height = waveform_height
        self.show_spectrum = show_spectrum

    def draw(
        self,
        frame: np.ndarray,
        update: Optional[TickUpdate],
        roi: Region,
        reading: bool = True,
    ) -> np.ndarray:
        """
        Annotate *frame* (BGR, H × W × 3) in-place and return it.

        *update* may be ``None`` when the last tick was skipped or no session
        is running; only the ROI box and status line are drawn then.
        """
        x, y, rw, rh = roi
        colour = _GREEN if reading else _YELLOW
        cv2.rectangle(frame, (x, y), (x + rw, y + rh), colour, 2)
        cv2.putText(
            frame, "Scanning..." if reading else "Reading finished",
            (x, max(12, y - 8)), cv2.FONT_HERSHEY_SIMPLEX, 0.5, colour, 1, cv2.LINE_AA,
        )
        if update is None:
            return frame

        self._draw_heart_rate(frame, update)
        self._draw_hrv(frame, update)
        self._draw_status(frame, update)
        if len(update.snapshot) > 1:
            self._draw_waveform(frame, update.snapshot.values, update.peaks)
        if self.show_spectrum and update.spectrum is not None and len(update.spectrum) > 1:
            self._draw_spectrum(frame, update.spectrum.magnitudes, update.spectrum.spectral_bpm())
        return frame

    # ------------------------------------------------------------------
    # Private drawing helpers
    # ------------------------------------------------------------------

    def _draw_heart_rate(self, frame: np.ndarray, update: TickUpdate) -> None:
        if update.heart_rate is None:
            cv2.putText(
                frame, f"Warming up... {update.buffer_fill * 100:.0f}%",
                (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 0.7, _YELLOW, 2, cv2.LINE_AA,
            )
            return
        col = _RED if update.pulse else _GREEN
        text = f"{update.heart_rate} BPM"
        cv2.putText(frame, text, (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, _BLACK, 5, cv2.LINE_AA)
        cv2.putText(frame, text, (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, col, 3, cv2.LINE_AA)

    def _draw_hrv(self, frame: np.ndarray, update: TickUpdate) -> None:
        hrv = update.hrv
        if hrv is None:
            return
        lines = []
        if hrv.hrv is not None:
            lines.append(f"HRV {hrv.hrv} ms  stress {hrv.stress.value}")
        if hrv.condition is not None:
            lines.append(hrv.condition.value)
        if not lines:
            return
        lines.append("heuristic, not a diagnosis")
        for i, line in enumerate(lines):
            cv2.putText(
                frame, line,
                (16, 84 + 20 * i), cv2.FONT_HERSHEY_SIMPLEX, 0.5, _WHITE, 1, cv2.LINE_AA,
            )

    def _draw_status(self, frame: np.ndarray, update: TickUpdate) -> None:
        w = frame.shape[1]
        cv2.putText(
            frame, f"{update.remaining_seconds:02d}s",
            (w - 100, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.45, _CYAN, 1, cv2.LINE_AA,
        )
        if update.quality is not None:
            level = update.quality.level
            cv2.putText(
                frame, level.value,
                (w - 100, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.45,
                _QUALITY_COLOURS[level], 1, cv2.LINE_AA,
            )

    def _draw_waveform(self, frame: np.ndarray, signal: np.ndarray, peaks: Tuple[int, ...]) -> None:
        """Draw the buffered samples in a dark strip at the bottom of the frame."""
        h, w = frame.shape[:2]
        panel_top = h - self.waveform_height
        cv2.rectangle(frame, (0, panel_top), (w, h), _DARK, -1)

        mn, mx = float(signal.min()), float(signal.max())
        rng = mx - mn if mx != mn else 1.0
        norm = (signal - mn) / rng

        margin = 6
        plot_h = self.waveform_height - 2 * margin
        xs = np.linspace(0, w - 1, len(norm)).astype(int)
        ys = (panel_top + margin + (1.0 - norm) * plot_h).astype(int)

        pts = np.column_stack([xs, ys]).astype(np.int32)
        cv2.polylines(frame, [pts[:, None, :]], False, _GREEN, 1, cv2.LINE_AA)
        for idx in peaks:
            cv2.circle(frame, (int(xs[idx]), int(ys[idx])), 3, _RED, -1, cv2.LINE_AA)

        cv2.putText(
            frame, "PPG",
            (4, panel_top + 14), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

    def _draw_spectrum(
        self, frame: np.ndarray, mags: np.ndarray, spectral_bpm: Optional[float] = None,
    ) -> None:
        """Draw the lower half of the spectrum as a bar graph on the right side."""
        h, w = frame.shape[:2]
        panel_w = 160
        panel_x = w - panel_w - 10
        panel_y = 100
        panel_h = h - panel_y - self.waveform_height - 20
        if panel_h <= 20 or panel_x <= 0:
            return

        cv2.rectangle(frame, (panel_x, panel_y), (w - 10, panel_y + panel_h), _DARK, -1)

        half = mags[: len(mags) // 2 + 1]
        peak = float(half.max())
        norm = half / peak if peak > 0 else half

        num_bars = min(len(norm), panel_w - 20)
        bar_width = max(1, (panel_w - 20) // num_bars)
        y_bottom = panel_y + panel_h - 10
        strongest = int(np.argmax(norm))
        for i in range(num_bars):
            bar_h = int(norm[i] * (panel_h - 20))
            x = panel_x + 10 + i * bar_width
            color = _YELLOW if i == strongest and peak > 0 else _PURPLE
            cv2.rectangle(frame, (x, y_bottom - bar_h), (x + bar_width - 1, y_bottom), color, -1)

        label = "FFT" if spectral_bpm is None else f"FFT ~{spectral_bpm:.0f} BPM"
        cv2.putText(
            frame, label,
            (panel_x + 10, panel_y + 18), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )
