"""
Frame sampler: one "redness" sample per video frame.

A fingertip pressed on the lens lets light through the tissue; the red share of
the light reaching the sensor dips slightly with every blood-volume pulse.  The
sampler averages each RGBA channel over a small square region of interest and
reports ``avg_red / (avg_red + avg_green + avg_blue)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from fingertip_ppg.errors import InvalidRegion


@dataclass(frozen=True)
class Sample:
    """One analysed frame.  ``timestamp`` is a monotonic instant in milliseconds."""

    timestamp: float
    value: float


class Region(NamedTuple):
    """Pixel rectangle ``(x, y, w, h)``."""

    x: int
    y: int
    w: int
    h: int


def centered_region(width: int, height: int, size: int) -> Region:
    """Return a ``size`` × ``size`` square centred in a ``width`` × ``height`` frame."""
    return Region(width // 2 - size // 2, height // 2 - size // 2, size, size)


def clip_region(region: Region, width: int, height: int) -> Region:
    """Clip *region* to the frame bounds.  The result may be empty (w or h == 0)."""
    x0 = min(max(region.x, 0), width)
    y0 = min(max(region.y, 0), height)
    x1 = min(max(region.x + region.w, 0), width)
    y1 = min(max(region.y + region.h, 0), height)
    return Region(x0, y0, x1 - x0, y1 - y0)


class FrameSampler:
    """
    Extract a red-reflectance sample from RGBA frames.

    Parameters
    ----------
    roi_size:
        Side length (px) of the default centred square ROI.
    region:
        Explicit ROI overriding the centred square.  It is clipped to the
        frame on every call.
    """

    def __init__(self, roi_size: int = 50, region: Region | None = None) -> None:
        self.roi_size = roi_size
        self.region = region

    def region_for(self, frame: np.ndarray) -> Region:
        """Return the clipped ROI used for *frame*."""
        height, width = frame.shape[:2]
        region = self.region or centered_region(width, height, self.roi_size)
        return clip_region(region, width, height)

    def channel_means(self, frame: np.ndarray) -> tuple[float, float, float]:
        """
        Return ``(avg_red, avg_green, avg_blue)`` over the ROI of *frame*.

        Raises
        ------
        InvalidRegion
            If *frame* is not an (H × W × 4) array or the clipped ROI is empty.
        """
        if frame.ndim != 3 or frame.shape[2] != 4:
            raise InvalidRegion(f"expected an RGBA frame (H x W x 4), got shape {frame.shape}")
        x, y, w, h = self.region_for(frame)
        if w == 0 or h == 0:
            raise InvalidRegion("region of interest lies outside the frame")
        # Slicing returns a view; the float conversion copies, so the caller's
        # buffer is never written.
        patch = frame[y:y + h, x:x + w, :3].astype(np.float64)
        means = patch.reshape(-1, 3).mean(axis=0)
        return float(means[0]), float(means[1]), float(means[2])

    def sample(self, frame: np.ndarray, timestamp: float) -> Sample:
        """Reduce *frame* to a :class:`Sample` stamped with *timestamp* (ms)."""
        red, green, blue = self.channel_means(frame)
        total = red + green + blue
        if total <= 0.0:
            raise InvalidRegion("region of interest is completely dark")
        return Sample(timestamp=float(timestamp), value=red / total)
