"""
Spectral view of the sample buffer.

Algorithm
---------
1. Zero-pad the values to ``N = 2 ** ceil(log2(len))``.
2. Recursive radix-2 Cooley–Tukey DFT:
   ``X[k] = E[k] + W^k O[k]`` and ``X[k + N/2] = E[k] - W^k O[k]`` with
   ``W = exp(-2πi / N)``.  The recursion walks strided index views into one
   backing list rather than copying even/odd sub-lists.
3. Optionally zero every bin whose frequency ``k * sample_rate / N`` lies
   outside the physiological pulse band (0.7 – 3.0 Hz, i.e. 42 – 180 BPM).

The spectrum is recomputed from scratch on each update.
"""

from __future__ import annotations

import cmath
import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

BAND_LOW_HZ = 0.7
BAND_HIGH_HZ = 3.0
DEFAULT_SAMPLE_RATE = 60.0


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= *n* (0 for an empty input)."""
    if n <= 0:
        return 0
    return 1 << (n - 1).bit_length()


def _fft(data: Sequence[complex], start: int, stride: int, n: int) -> List[complex]:
    if n <= 1:
        return [data[start]] if n == 1 else []
    half = n // 2
    even = _fft(data, start, stride * 2, half)
    odd = _fft(data, start + stride, stride * 2, half)
    out = [0j] * n
    for k in range(half):
        twiddled = cmath.exp(-2j * math.pi * k / n) * odd[k]
        out[k] = even[k] + twiddled
        out[k + half] = even[k] - twiddled
    return out


def fft(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """
    Zero-pad *values* to a power of two and return their DFT.

    An empty input yields an empty spectrum and a single value yields
    itself as the only bin.
    """
    values = [complex(float(v), 0.0) for v in values]
    n = next_power_of_two(len(values))
    values.extend([0j] * (n - len(values)))
    return np.array(_fft(values, 0, 1, n), dtype=np.complex128)


def bin_frequencies(n: int, sample_rate: float = DEFAULT_SAMPLE_RATE) -> np.ndarray:
    """Frequency ``k * sample_rate / n`` (Hz) of every bin ``k``."""
    if n == 0:
        return np.zeros(0)
    return np.arange(n) * (sample_rate / n)


def band_pass(
    spectrum: np.ndarray,
    sample_rate: float = DEFAULT_SAMPLE_RATE,
    low_hz: float = BAND_LOW_HZ,
    high_hz: float = BAND_HIGH_HZ,
) -> np.ndarray:
    """Return a copy of *spectrum* with bins outside ``[low_hz, high_hz]`` zeroed."""
    freqs = bin_frequencies(len(spectrum), sample_rate)
    filtered = np.array(spectrum, dtype=np.complex128, copy=True)
    filtered[(freqs < low_hz) | (freqs > high_hz)] = 0
    return filtered


def magnitudes(spectrum: np.ndarray) -> np.ndarray:
    return np.sqrt(spectrum.real ** 2 + spectrum.imag ** 2)


@dataclass(frozen=True)
class SpectralFrame:
    """One spectrum, valid for the update it was computed in."""

    bins: np.ndarray
    sample_rate: float
    band_passed: bool

    def __len__(self) -> int:
        return len(self.bins)

    @property
    def magnitudes(self) -> np.ndarray:
        return magnitudes(self.bins)

    @property
    def frequencies(self) -> np.ndarray:
        return bin_frequencies(len(self.bins), self.sample_rate)

    def dominant_frequency(self) -> float | None:
        """
        Frequency (Hz) of the strongest bin in ``(0, N/2]``.

        Returns ``None`` when the spectrum has no positive-frequency energy.
        """
        n = len(self.bins)
        if n < 2:
            return None
        mags = self.magnitudes[1:n // 2 + 1]
        if not mags.any():
            return None
        k = int(np.argmax(mags)) + 1
        return k * self.sample_rate / n

    def spectral_bpm(self) -> float | None:
        freq = self.dominant_frequency()
        return None if freq is None else freq * 60.0


class SpectralAnalyzer:
    """
    Radix-2 FFT of the buffered values with optional pulse-band filtering.

    Parameters
    ----------
    sample_rate:
        Assumed sampling rate in samples per second.
    band_pass_enabled:
        Zero bins outside ``[low_hz, high_hz]``.
    """

    def __init__(
        self,
        sample_rate: float = DEFAULT_SAMPLE_RATE,
        band_pass_enabled: bool = True,
        low_hz: float = BAND_LOW_HZ,
        high_hz: float = BAND_HIGH_HZ,
    ) -> None:
        self.sample_rate = sample_rate
        self.band_pass_enabled = band_pass_enabled
        self.low_hz = low_hz
        self.high_hz = high_hz

    def analyze(self, values: Sequence[float] | np.ndarray) -> SpectralFrame:
        bins = fft(values)
        if self.band_pass_enabled:
            bins = band_pass(bins, self.sample_rate, self.low_hz, self.high_hz)
        return SpectralFrame(bins=bins, sample_rate=self.sample_rate,
                             band_passed=self.band_pass_enabled)
