"""
Unit tests for Session, SessionTimer and run_session.
Run with:  pytest tests/test_session.py
"""

from __future__ import annotations

import time

import cv2
import numpy as np
import pytest

from fingertip_ppg.camera import Camera
from fingertip_ppg.config import AnalyzerConfig
from fingertip_ppg.errors import CameraUnavailable
from fingertip_ppg.glucose import MID_BAND
from fingertip_ppg.session import Session, SessionState, SessionTimer, StreamTimer, run_session

FPS = 60.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ManualTimer:
    """Stand-in for SessionTimer that only expires when told to."""

    def __init__(self, duration_seconds, on_expire):
        self.remaining_seconds = duration_seconds
        self.on_expire = on_expire
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def advance(self, now_ms):
        pass

    def cancel(self):
        self.cancelled = True

    def join(self):
        pass

    def expire(self):
        self.remaining_seconds = 0
        self.on_expire()


class FakeCamera:
    def __init__(self, frames, fail_open=False):
        self._frames = list(frames)
        self.fail_open = fail_open
        self.opened = False
        self.closed = False

    def __enter__(self):
        if self.fail_open:
            raise CameraUnavailable("no device")
        self.opened = True
        return self

    def __exit__(self, *_):
        self.closed = True

    def frames(self):
        yield from self._frames


def _pulse_frames(n: int = 150, hz: float = 1.2) -> list[np.ndarray]:
    """RGBA frames whose red channel pulses at *hz*, peaking at index 25."""
    idx = np.arange(n)
    red = np.round(128 + 120 * np.cos(2 * np.pi * hz * (idx - 25) / FPS)).astype(np.uint8)
    frames = []
    for r in red:
        frame = np.full((60, 60, 4), 255, dtype=np.uint8)
        frame[:, :, 0] = r
        frame[:, :, 1] = 50
        frame[:, :, 2] = 50
        frames.append(frame)
    return frames


def _write_pulse_video(path, n: int = 480) -> bool:
    """Write an MJPG clip whose red level peaks every 50 frames, at frames 5, 55, ..."""
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), FPS, (64, 64))
    if not writer.isOpened():
        return False
    for i in range(n):
        d = (i - 5) % 50
        red = int(round(250 - 7.6 * min(d, 50 - d)))
        frame = np.zeros((64, 64, 3), dtype=np.uint8)
        frame[:, :] = (50, 50, red)
        writer.write(frame)
    writer.release()
    return True


@pytest.fixture
def pulse_video(tmp_path):
    path = tmp_path / "pulse.avi"
    if not _write_pulse_video(path):
        pytest.skip("OpenCV has no MJPG writer")
    return path


def _timestamps(n: int, start: float = 0.0) -> list[float]:
    return [start + i * 1000.0 / FPS for i in range(n)]


def _session(**config) -> tuple[Session, list[ManualTimer]]:
    timers: list[ManualTimer] = []

    def factory(duration, on_expire):
        timers.append(ManualTimer(duration, on_expire))
        return timers[-1]

    session = Session(
        AnalyzerConfig(**config),
        rng=np.random.default_rng(0),
        timer_factory=factory,
        clock=lambda: 1_700_000_000.0,
    )
    return session, timers


def _feed(session: Session, frames, timestamps):
    return [session.tick(f, t) for f, t in zip(frames, timestamps)]


# ---------------------------------------------------------------------------
# Session tests
# ---------------------------------------------------------------------------

class TestSessionLifecycle:

    def test_idle_session_ignores_ticks(self):
        session, _ = _session()
        assert session.state is SessionState.IDLE
        assert session.tick(_pulse_frames(1)[0], 0.0) is None
        assert len(session.buffer) == 0

    def test_start_starts_timer(self):
        session, timers = _session(session_duration_seconds=30)
        session.start()
        assert session.state is SessionState.READING
        assert timers[0].started
        assert session.remaining_seconds == 30

    def test_full_reading_reports_72_bpm(self):
        session, _ = _session(buffer_capacity=150)
        session.start()
        updates = _feed(session, _pulse_frames(), _timestamps(150))
        last = updates[-1]
        assert last.peaks == (25, 75, 125)
        assert last.heart_rate == 72
        assert last.condition is None
        assert len(last.spectrum) == 256

        record = session.stop()
        assert session.state is SessionState.FINISHED
        assert record.heart_rate == 72
        assert record.hrv == 0
        assert record.stress == "Normal"
        assert MID_BAND[0] <= record.glucose_estimate <= MID_BAND[1]
        assert record.timestamp == 1_700_000_000.0
        assert record.to_dict()["heart_rate"] == 72

    def test_constant_signal_never_estimates(self):
        session, _ = _session()
        session.start()
        frame = _pulse_frames(1)[0]
        updates = _feed(session, [frame] * 150, _timestamps(150))
        assert all(u.peaks == () for u in updates)
        assert session.heart_rate is None
        record = session.stop()
        assert record.heart_rate is None
        assert record.glucose_estimate is None

    def test_timer_expiry_finishes_session(self):
        session, timers = _session()
        session.start()
        _feed(session, _pulse_frames(), _timestamps(150))
        timers[0].expire()
        assert session.state is SessionState.FINISHED
        assert session.record.heart_rate == 72
        assert session.tick(_pulse_frames(1)[0], 10_000.0) is None

    def test_stop_cancels_timer_and_is_idempotent(self):
        session, timers = _session()
        session.start()
        first = session.stop()
        assert timers[0].cancelled
        assert session.stop() is first

    def test_reset_clears_everything(self):
        session, _ = _session()
        session.start()
        _feed(session, _pulse_frames(), _timestamps(150))
        session.reset()
        assert session.state is SessionState.IDLE
        assert len(session.buffer) == 0
        assert session.heart_rate is None
        assert session.hrv is None
        assert session.record is None

    def test_restart_clears_previous_reading(self):
        session, timers = _session()
        session.start()
        _feed(session, _pulse_frames(), _timestamps(150))
        session.stop()
        session.start()
        assert len(timers) == 2
        assert session.heart_rate is None
        assert len(session.buffer) == 0


class TestSessionTicks:

    def test_invalid_region_skips_tick_and_keeps_estimates(self):
        session, _ = _session()
        session.start()
        _feed(session, _pulse_frames(), _timestamps(150))
        black = np.zeros((60, 60, 4), dtype=np.uint8)
        assert session.tick(black, 3000.0) is None
        assert len(session.buffer) == 150
        assert session.heart_rate == 72

    def test_unexpected_error_does_not_escape(self):
        session, _ = _session()
        session.start()
        frame = _pulse_frames(1)[0]
        session.tick(frame, 100.0)
        # Timestamp going backwards is rejected by the buffer.
        assert session.tick(frame, 50.0) is None
        assert session.state is SessionState.READING
        assert session.tick(frame, 120.0) is not None

    def test_sinks_receive_updates_and_failures_are_isolated(self):
        session, _ = _session()
        received = []

        def broken(update):
            raise RuntimeError("sink down")

        session.add_sink(broken)
        session.add_sink(received.append)
        session.start()
        _feed(session, _pulse_frames(10), _timestamps(10))
        assert len(received) == 10
        assert received[-1].latest_sample.timestamp == pytest.approx(9 * 1000.0 / FPS)

    def test_pulse_listener_and_flag(self):
        session, _ = _session()
        pulses = []
        session.add_pulse_listener(lambda ts, bpm: pulses.append(bpm))
        session.start()
        updates = _feed(session, _pulse_frames(), _timestamps(150))
        assert pulses[-1] == 72
        assert updates[-1].pulse is True

    def test_config_changes_apply_on_next_tick(self):
        session, _ = _session(buffer_capacity=150)
        session.start()
        frames = _pulse_frames(100)
        _feed(session, frames[:80], _timestamps(80))
        session.config.buffer_capacity = 40
        session.config.band_pass_enabled = False
        update = session.tick(frames[80], _timestamps(81)[-1])
        assert session.buffer.capacity == 40
        assert len(update.snapshot) == 40
        assert update.spectrum.band_passed is False

    def test_quality_reported(self):
        session, _ = _session()
        session.start()
        updates = _feed(session, _pulse_frames(), _timestamps(150))
        assert updates[-1].quality is not None


class TestSessionTimer:

    def test_counts_down_and_expires(self):
        expired = []
        timer = SessionTimer(3, lambda: expired.append(True), tick_seconds=0.01)
        timer.start()
        deadline = time.monotonic() + 2.0
        while not expired and time.monotonic() < deadline:
            time.sleep(0.01)
        assert expired == [True]
        assert timer.remaining_seconds == 0

    def test_cancel_prevents_expiry(self):
        expired = []
        timer = SessionTimer(100, lambda: expired.append(True), tick_seconds=0.01)
        timer.start()
        timer.cancel()
        timer.join()
        time.sleep(0.05)
        assert expired == []
        assert timer.remaining_seconds > 0

    def test_stop_does_not_wait_on_expiring_timer(self):
        timers = []

        def factory(duration, on_expire):
            timers.append(SessionTimer(duration, on_expire, tick_seconds=0.01))
            return timers[-1]

        session = Session(AnalyzerConfig(session_duration_seconds=1), timer_factory=factory)
        session.start()
        # Hold the session lock so the expiring timer blocks inside on_expire.
        with session._lock:
            deadline = time.monotonic() + 2.0
            while timers[0].remaining_seconds > 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert timers[0].remaining_seconds == 0
            started = time.monotonic()
            record = session.stop()
            elapsed = time.monotonic() - started
        assert elapsed < 0.5
        assert record is not None
        assert session.state is SessionState.FINISHED

    def test_real_timer_finishes_session(self):
        session = Session(
            AnalyzerConfig(session_duration_seconds=2),
            timer_factory=lambda d, cb: SessionTimer(d, cb, tick_seconds=0.01),
        )
        session.start()
        deadline = time.monotonic() + 2.0
        while session.state is SessionState.READING and time.monotonic() < deadline:
            time.sleep(0.01)
        assert session.state is SessionState.FINISHED


class TestStreamTimer:

    def test_counts_down_in_stream_time(self):
        expired = []
        timer = StreamTimer(2, lambda: expired.append(True))
        timer.start()
        timer.advance(500.0)
        timer.advance(1400.0)
        assert timer.remaining_seconds == 2
        timer.advance(1500.0)
        assert timer.remaining_seconds == 1
        timer.advance(2499.0)
        assert expired == []
        timer.advance(2500.0)
        assert expired == [True]
        assert timer.remaining_seconds == 0
        timer.advance(9000.0)
        assert expired == [True]

    def test_cancel_prevents_expiry(self):
        expired = []
        timer = StreamTimer(1, lambda: expired.append(True))
        timer.start()
        timer.advance(0.0)
        timer.cancel()
        timer.join()
        timer.advance(5000.0)
        assert expired == []

    def test_session_finishes_after_stream_duration(self):
        session = Session(AnalyzerConfig(session_duration_seconds=1), timer_factory=StreamTimer)
        session.start()
        updates = _feed(session, _pulse_frames(90), _timestamps(90))
        assert session.state is SessionState.FINISHED
        assert len(session.buffer) == 60
        assert updates[59].remaining_seconds == 1
        assert updates[60] is None


class TestRunSession:

    def test_runs_until_frames_exhausted(self):
        session, _ = _session()
        camera = FakeCamera(_pulse_frames())
        clock = iter(_timestamps(150)).__next__
        record = run_session(camera, session, clock=clock)
        assert camera.opened and camera.closed
        assert record.heart_rate == 72
        assert session.state is SessionState.FINISHED

    def test_on_tick_can_stop_early(self):
        session, _ = _session()
        camera = FakeCamera(_pulse_frames())
        seen = []

        def on_tick(frame, update):
            seen.append(update)
            return len(seen) < 5

        run_session(camera, session, clock=iter(_timestamps(150)).__next__, on_tick=on_tick)
        assert len(seen) == 5
        assert camera.closed

    def test_camera_released_on_error(self):
        session, _ = _session()
        camera = FakeCamera(_pulse_frames())

        def on_tick(frame, update):
            raise RuntimeError("display crashed")

        with pytest.raises(RuntimeError):
            run_session(camera, session, clock=iter(_timestamps(150)).__next__, on_tick=on_tick)
        assert camera.closed
        assert session.state is SessionState.FINISHED

    def test_camera_unavailable_propagates(self):
        session, _ = _session()
        with pytest.raises(CameraUnavailable):
            run_session(FakeCamera([], fail_open=True), session)
        assert session.state is SessionState.IDLE

    def test_stops_when_session_finishes(self):
        session, timers = _session()
        frames = _pulse_frames(20)

        def on_tick(frame, update):
            if len(session.buffer) == 10:
                timers[0].expire()
            return True

        run_session(FakeCamera(frames), session, clock=iter(_timestamps(20)).__next__, on_tick=on_tick)
        assert len(session.buffer) == 10

    def test_video_file_heart_rate_uses_stream_time(self, pulse_video):
        session = Session(AnalyzerConfig(), rng=np.random.default_rng(0), timer_factory=StreamTimer)
        record = run_session(Camera(source=str(pulse_video)), session)
        assert record.heart_rate is not None
        assert abs(record.heart_rate - 72) <= 8

    def test_video_file_duration_counts_stream_time(self, pulse_video):
        session = Session(AnalyzerConfig(session_duration_seconds=2), timer_factory=StreamTimer)
        run_session(Camera(source=str(pulse_video)), session)
        assert session.state is SessionState.FINISHED
        timestamps = session.buffer.snapshot().timestamps
        assert 1950.0 <= timestamps[-1] - timestamps[0] < 2000.0
