"""
Fingertip PPG – pulse analysis from a fingertip pressed on a camera lens.

Each video frame is reduced to one "redness" sample taken from a small region
of interest.  The rolling sample buffer feeds a peak-based heart-rate
estimator, an HRV / rhythm classifier and a radix-2 FFT spectrum view.

None of the derived values are medical measurements.
"""

__version__ = "0.1.0"
__author__ = "fingertip_ppg"
