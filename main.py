#!/usr/bin/env python3
"""
Fingertip PPG – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --resolution WxH     Camera resolution (default: 640x480)
    --fps INT            Target frame rate / spectrum sample rate (default: 60)
    --camera-index INT   OpenCV camera index (default: 0)
    --video PATH         Analyse a recorded video instead of a live camera
    --roi-size INT       ROI side length in pixels, 20 – 100 (default: 50)
    --threshold FLOAT    Peak threshold factor, 0.1 – 1.0 (default: 0.5)
    --no-band-pass       Show the unfiltered spectrum
    --duration INT       Reading length in seconds (default: 45)
    --capacity INT       Sample buffer capacity (default: 150)
    --history PATH       Append the finished reading to a JSON-lines file
    --headless           Run without display window (log readings to stdout)
    --verbose            Debug logging

Keyboard shortcuts (when a window is open)
------------------------------------------
    SPACE    – finish the reading now
    r        – discard and restart the reading
    q / ESC  – quit
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Must be set before cv2 is imported so Qt5 uses X11/XWayland instead of
# looking for a Wayland plugin that is not bundled with pip-installed opencv.
import os
os.environ.setdefault("QT_QPA_PLATFORM", "xcb")

import cv2
import numpy as np

from fingertip_ppg.camera import Camera
from fingertip_ppg.config import AnalyzerConfig
from fingertip_ppg.errors import CameraUnavailable
from fingertip_ppg.glucose import NON_DIAGNOSTIC_NOTE
from fingertip_ppg.session import (
    Session, SessionRecord, SessionState, SessionTimer, StreamTimer, TickUpdate, run_session,
)
from fingertip_ppg.visualizer import Visualizer

logger = logging.getLogger("fingertip_ppg")

WINDOW_NAME = "Fingertip PPG"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Heart rate and HRV from a fingertip on the camera lens",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--fps", type=int, default=60,
                        help="Target capture frame rate (also the spectrum sample rate)")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    source.add_argument("--video", type=Path, default=None,
                        help="Analyse this video file instead of a live camera")
    parser.add_argument("--roi-size", type=int, default=50,
                        help="Side length of the sampled square, 20 – 100 px")
    parser.add_argument("--threshold", type=float, default=0.5,
                        help="Peak detector threshold factor, 0.1 – 1.0")
    parser.add_argument("--no-band-pass", action="store_true",
                        help="Do not band-limit the spectrum to 0.7 – 3.0 Hz")
    parser.add_argument("--duration", type=int, default=45,
                        help="Length of one reading in seconds")
    parser.add_argument("--capacity", type=int, default=150,
                        help="Number of samples kept for analysis")
    parser.add_argument("--history", type=Path, default=None,
                        help="Append finished readings to this JSON-lines file")
    parser.add_argument("--headless", action="store_true",
                        help="No display window; log readings to stdout only")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AnalyzerConfig:
    return AnalyzerConfig(
        roi_size=args.roi_size,
        threshold_factor=args.threshold,
        band_pass_enabled=not args.no_band_pass,
        session_duration_seconds=args.duration,
        buffer_capacity=args.capacity,
        sample_rate=float(args.fps),
    ).validate()


def save_record(path: Path, record: SessionRecord) -> None:
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record.to_dict()) + "\n")
    logger.info("Reading appended to %s", path)


def log_record(record: SessionRecord | None) -> None:
    if record is None or record.heart_rate is None:
        logger.info("Reading finished without a heart-rate estimate.")
        return
    logger.info(
        "Reading: %d BPM  HRV=%s ms  stress=%s  condition=%s",
        record.heart_rate, record.hrv, record.stress, record.condition or "none",
    )
    logger.info("Glucose placeholder: %s mg/dL (%s) – %s",
                record.glucose_estimate, record.glucose_category, NON_DIAGNOSTIC_NOTE)


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )

    # Parse resolution
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    camera = Camera(
        source=str(args.video) if args.video else args.camera_index,
        resolution=(res_w, res_h),
        fps=args.fps,
    )
    session = Session(config, timer_factory=SessionTimer if camera.is_live else StreamTimer)
    vis = Visualizer()

    if args.headless:
        last_logged = {"second": None}

        def log_update(update: TickUpdate) -> None:
            second = update.remaining_seconds
            if second == last_logged["second"]:
                return
            last_logged["second"] = second
            ts = time.strftime("%H:%M:%S")
            if update.heart_rate is not None:
                print(f"[{ts}] BPM={update.heart_rate}  quality={update.quality.level.value}"
                      f"  remaining={second}s")
            else:
                print(f"[{ts}] Waiting for signal…  remaining={second}s")

        session.add_sink(log_update)
    else:
        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
        cv2.resizeWindow(WINDOW_NAME, res_w, res_h)

    def on_tick(frame: np.ndarray, update: TickUpdate | None) -> bool:
        if args.headless:
            return True
        bgr = cv2.cvtColor(frame, cv2.COLOR_RGBA2BGR)
        roi = session.sampler.region_for(frame)
        annotated = vis.draw(bgr, update, roi, reading=session.state is SessionState.READING)
        cv2.imshow(WINDOW_NAME, annotated)
        key = cv2.waitKey(1) & 0xFF
        if key in (ord("q"), 27):          # q or ESC
            logger.info("Quit requested by user.")
            return False
        if key == ord(" "):
            session.stop()
        elif key == ord("r"):
            session.reset()
            session.start()
        return True

    logger.info("Place a fingertip over the lens.  Reading for %ds.", config.session_duration_seconds)
    try:
        record = run_session(camera, session, on_tick=on_tick)
    except CameraUnavailable as exc:
        logger.error("Camera unavailable: %s", exc)
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        session.stop()
        record = session.record
    finally:
        if not args.headless:
            cv2.destroyAllWindows()

    log_record(record)
    if record is not None and args.history is not None:
        save_record(args.history, record)
    return 0


def main() -> None:
    sys.exit(run(parse_args()))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
