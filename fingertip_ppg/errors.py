"""Exception types raised by the acquisition and analysis pipeline."""

from __future__ import annotations


class PPGError(Exception):
    """Base class for all fingertip_ppg errors."""


class CameraUnavailable(PPGError, RuntimeError):
    """The frame source could not be acquired.  Fatal to starting a session."""


class InvalidRegion(PPGError, ValueError):
    """The region of interest holds no usable pixels for this frame."""


class InsufficientData(PPGError):
    """Not enough samples or peaks to produce an estimate yet."""
