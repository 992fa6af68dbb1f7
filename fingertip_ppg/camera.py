"""
Frame source.

Wraps OpenCV ``VideoCapture`` (a camera index or a recorded video file) and
yields RGBA frames, which is the layout the frame sampler expects.

Live devices are stamped with the monotonic clock.  Video files decode much
faster than real time, so their frames are stamped with the position in the
stream instead, and the end of the file ends the frame generator.
"""

from __future__ import annotations

import logging
import time
from typing import Generator, Tuple, Union

import cv2
import numpy as np

from fingertip_ppg.errors import CameraUnavailable

logger = logging.getLogger(__name__)

MAX_FAILED_READS = 10


class Camera:
    """
    Thin wrapper around ``cv2.VideoCapture``.

    Parameters
    ----------
    source:
        OpenCV device index, or a path to a video file.
    resolution:
        Requested (width, height) for live devices.
    fps:
        Requested frame rate for live devices.  The ideal is 60.
    flip_horizontal:
        Mirror the image left-to-right.
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 60,
        flip_horizontal: bool = False,
    ) -> None:
        self.source = source
        self.resolution = resolution
        self.fps = fps
        self.flip_horizontal = flip_horizontal

        self._cap: "cv2.VideoCapture | None" = None
        self._frames_read = 0
        self._position_ms = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """
        Acquire the capture device.

        Raises
        ------
        CameraUnavailable
            If OpenCV cannot open *source*.
        """
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailable(f"Cannot open video source {self.source!r}")
        if self.is_live:
            w, h = self.resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cap = cap
        self._frames_read = 0
        self._position_ms = 0.0
        logger.info("Camera opened – source=%r resolution=%s fps=%d",
                    self.source, self.resolution, self.fps)

    def close(self) -> None:
        """Release the capture device.  Safe to call more than once."""
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Camera closed.")

    @property
    def is_live(self) -> bool:
        """True for a device index, False for a recorded video file."""
        return isinstance(self.source, int)

    # Context-manager support
    def __enter__(self) -> "Camera":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> np.ndarray | None:
        """
        Capture a single frame.

        Returns
        -------
        numpy.ndarray
            RGBA image array (H × W × 4, dtype uint8), or *None* on failure
            or at the end of a video file.
        """
        if self._cap is None:
            raise RuntimeError("Camera is not open.  Call open() first.")

        ok, frame = self._cap.read()
        if not ok or frame is None:
            if self.is_live:
                logger.warning("VideoCapture.read() returned no frame.")
            return None
        self._frames_read += 1
        if not self.is_live:
            self._position_ms = max(self._position_ms, self._stream_position_ms())
        if self.flip_horizontal:
            frame = cv2.flip(frame, 1)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)

    def timestamp(self) -> float:
        """
        Timestamp (ms) of the most recent frame.

        Video files report their position in the stream; live devices report
        the monotonic clock at the time of the call.
        """
        if self.is_live:
            return time.monotonic() * 1000.0
        return self._position_ms

    def frames(self) -> Generator[np.ndarray, None, None]:
        """
        Yield frames until the camera is closed, a video file ends, or live
        reads keep failing.

        Usage::

            with Camera() as cam:
                for frame in cam.frames():
                    process(frame, cam.timestamp())
        """
        _null_streak = 0
        while self._cap is not None:
            frame = self.read_frame()
            if frame is None:
                if not self.is_live:
                    logger.info("End of video after %d frames.", self._frames_read)
                    break
                _null_streak += 1
                if _null_streak >= MAX_FAILED_READS:
                    logger.error(
                        "Camera returned %d consecutive empty frames – aborting.",
                        MAX_FAILED_READS,
                    )
                    break
                continue
            _null_streak = 0
            yield frame

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _stream_position_ms(self) -> float:
        # Some backends leave CAP_PROP_POS_MSEC at 0; count frames then.
        position = float(self._cap.get(cv2.CAP_PROP_POS_MSEC))
        if position > 0 or self._frames_read <= 1:
            return position
        native_fps = float(self._cap.get(cv2.CAP_PROP_FPS)) or float(self.fps)
        return (self._frames_read - 1) * 1000.0 / native_fps
