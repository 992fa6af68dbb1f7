"""
Bounded, time-ordered sample buffer shared by the sampler and the analysers.

One producer appends, one consumer snapshots.  Both go through a single lock,
so a snapshot always reflects the buffer between two complete appends.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque

import numpy as np

from fingertip_ppg.frame_sampler import Sample


@dataclass(frozen=True)
class BufferSnapshot:
    """Immutable, time-ordered view of the buffer at one instant."""

    samples: tuple[Sample, ...]
    timestamps: np.ndarray = field(init=False, repr=False, compare=False)
    values: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        timestamps = np.fromiter((s.timestamp for s in self.samples), dtype=np.float64,
                                 count=len(self.samples))
        values = np.fromiter((s.value for s in self.samples), dtype=np.float64,
                             count=len(self.samples))
        timestamps.flags.writeable = False
        values.flags.writeable = False
        object.__setattr__(self, "timestamps", timestamps)
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def latest(self) -> Sample | None:
        return self.samples[-1] if self.samples else None


class SignalBuffer:
    """
    FIFO of :class:`Sample` objects with a fixed capacity.

    Parameters
    ----------
    capacity:
        Maximum number of samples; pushing beyond it evicts the oldest.
    """

    def __init__(self, capacity: int = 150) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._samples: Deque[Sample] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def push(self, sample: Sample) -> None:
        """
        Append *sample*, evicting the oldest one when full.

        Raises
        ------
        ValueError
            If *sample* is older than the newest buffered sample.
        """
        with self._lock:
            if self._samples and sample.timestamp < self._samples[-1].timestamp:
                raise ValueError(
                    f"sample timestamp {sample.timestamp} precedes "
                    f"buffer tail {self._samples[-1].timestamp}"
                )
            self._samples.append(sample)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    def resize(self, capacity: int) -> None:
        """Change the capacity, keeping the newest samples."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        with self._lock:
            if capacity != self._samples.maxlen:
                self._samples = deque(self._samples, maxlen=capacity)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def snapshot(self) -> BufferSnapshot:
        with self._lock:
            samples = tuple(self._samples)
        return BufferSnapshot(samples)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen

    @property
    def fill_ratio(self) -> float:
        """How full the buffer is (0 – 1)."""
        with self._lock:
            return len(self._samples) / self._samples.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
