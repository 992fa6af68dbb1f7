"""
Reading session: owns the buffer, the configuration and every derived value.

Per-tick flow
-------------

.. code-block:: text

    tick(frame, timestamp)
       │
       ├─ FrameSampler        → Sample (skip tick on InvalidRegion)
       ├─ SignalBuffer.push
       ├─ detect_peaks        → peak indices
       ├─ HeartRateEstimator  → BPM (or keep previous)
       ├─ classify            → HRV / condition / stress
       ├─ SpectralAnalyzer    → spectrum
       └─ sinks(TickUpdate)

Ticks and state transitions (start / stop / reset) are serialised by one
re-entrant lock, so a stop requested from the timer thread or from a sink
always lands between two complete ticks.

A :class:`SessionTimer` thread counts a live reading down once per wall-clock
second and finishes the session when it reaches zero.  Recorded video uses a
:class:`StreamTimer`, which counts down in stream time from the frame
timestamps passed to each tick.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from fingertip_ppg.config import AnalyzerConfig
from fingertip_ppg.errors import InvalidRegion
from fingertip_ppg.frame_sampler import FrameSampler, Sample
from fingertip_ppg.glucose import GlucoseEstimate, estimate_glucose
from fingertip_ppg.heart_rate import HeartRateEstimator
from fingertip_ppg.hrv import Condition, HrvReport, classify
from fingertip_ppg.peak_detector import detect_peaks
from fingertip_ppg.quality import FingerDetector, QualityReport, assess_quality
from fingertip_ppg.signal_buffer import BufferSnapshot, SignalBuffer
from fingertip_ppg.spectrum import SpectralAnalyzer, SpectralFrame

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SessionState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    FINISHED = "finished"


@dataclass(frozen=True)
class TickUpdate:
    """Everything a rendering sink needs after one tick."""

    latest_sample: Sample
    snapshot: BufferSnapshot
    peaks: tuple[int, ...]
    heart_rate: Optional[int]
    hrv: Optional[HrvReport]
    spectrum: Optional[SpectralFrame]
    quality: Optional[QualityReport]
    pulse: bool
    remaining_seconds: int
    buffer_fill: float = 0.0

    @property
    def condition(self) -> Optional[Condition]:
        return self.hrv.condition if self.hrv is not None else None


@dataclass(frozen=True)
class SessionRecord:
    """Finalised result handed to a persistence collaborator."""

    timestamp: float
    heart_rate: Optional[int]
    glucose_estimate: Optional[int]
    glucose_category: Optional[str]
    condition: Optional[str]
    hrv: Optional[int]
    stress: Optional[str]

    def to_dict(self) -> dict:
        return asdict(self)


Sink = Callable[[TickUpdate], None]


class SessionTimer:
    """
    Countdown running on its own daemon thread.

    Parameters
    ----------
    duration_seconds:
        Starting value of :attr:`remaining_seconds`.
    on_expire:
        Called from the timer thread when the countdown reaches zero.
    tick_seconds:
        Wall-clock length of one decrement.
    """

    def __init__(
        self,
        duration_seconds: int,
        on_expire: Callable[[], None],
        tick_seconds: float = 1.0,
    ) -> None:
        self.duration_seconds = duration_seconds
        self.on_expire = on_expire
        self.tick_seconds = tick_seconds
        self._remaining = duration_seconds
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="session-timer", daemon=True)
        self._thread.start()

    def advance(self, now_ms: float) -> None:
        """Frame timestamps do not drive a wall-clock countdown."""

    def cancel(self) -> None:
        """Stop the countdown without waiting for the thread."""
        self._cancelled.set()

    def join(self) -> None:
        """
        Wait for the thread after :meth:`cancel`.

        Once the countdown has hit zero the thread is inside (or past)
        ``on_expire`` and is not waited for.
        """
        thread = self._thread
        if thread is None or thread is threading.current_thread() or self._remaining == 0:
            return
        thread.join(timeout=self.tick_seconds + 1.0)

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    def _run(self) -> None:
        while self._remaining > 0:
            if self._cancelled.wait(self.tick_seconds):
                return
            self._remaining -= 1
        if not self._cancelled.is_set():
            self.on_expire()


class StreamTimer:
    """
    Countdown driven by frame timestamps instead of the wall clock.

    Used for recorded video, which decodes faster than it plays: the reading
    lasts ``duration_seconds`` of stream time.  :meth:`advance` is called with
    each frame's timestamp and fires ``on_expire`` from the calling thread.
    """

    def __init__(self, duration_seconds: int, on_expire: Callable[[], None]) -> None:
        self.duration_seconds = duration_seconds
        self.on_expire = on_expire
        self._remaining = duration_seconds
        self._started_at: Optional[float] = None
        self._cancelled = False

    def start(self) -> None:
        self._started_at = None

    def advance(self, now_ms: float) -> None:
        if self._cancelled or self._remaining == 0:
            return
        if self._started_at is None:
            self._started_at = now_ms
        elapsed = int((now_ms - self._started_at) // 1000)
        self._remaining = max(0, self.duration_seconds - elapsed)
        if self._remaining == 0:
            self.on_expire()

    def cancel(self) -> None:
        self._cancelled = True

    def join(self) -> None:
        pass

    @property
    def remaining_seconds(self) -> int:
        return self._remaining


class Session:
    """
    One fingertip reading.

    Parameters
    ----------
    config:
        Live configuration; re-read at the start of every tick.
    rng:
        Random generator for the glucose placeholder.
    timer_factory:
        ``factory(duration_seconds, on_expire)`` returning a started-on-demand
        timer.  Defaults to :class:`SessionTimer`; pass :class:`StreamTimer`
        when frames come from a recorded video.
    clock:
        Wall clock (epoch seconds) used to stamp the final record.
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        rng: Optional[np.random.Generator] = None,
        finger_detector: Optional[FingerDetector] = None,
        timer_factory: Callable[[int, Callable[[], None]], SessionTimer] = SessionTimer,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = (config or AnalyzerConfig()).validate()
        self._rng = rng
        self._timer_factory = timer_factory
        self._clock = clock
        self._finger_detector = finger_detector or FingerDetector()

        self._sampler = FrameSampler(roi_size=self.config.roi_size)
        self._buffer = SignalBuffer(capacity=self.config.buffer_capacity)
        self._heart_rate = HeartRateEstimator(
            min_samples=self.config.min_samples,
            pulse_duration_ms=self.config.pulse_duration_ms,
        )
        self._spectral = SpectralAnalyzer(sample_rate=self.config.sample_rate)

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._timer: Optional[SessionTimer] = None
        self._sinks: List[Sink] = []

        self._hrv: Optional[HrvReport] = None
        self._glucose: Optional[GlucoseEstimate] = None
        self._record: Optional[SessionRecord] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add_sink(self, sink: Sink) -> None:
        """Register ``sink(update)`` to receive a :class:`TickUpdate` after every tick."""
        self._sinks.append(sink)

    def add_pulse_listener(self, listener: Callable[[float, int], None]) -> None:
        self._heart_rate.add_listener(listener)

    def start(self) -> None:
        """Begin a new reading, discarding any previous one."""
        with self._lock:
            if self._state is SessionState.READING:
                logger.warning("Session already reading; start() ignored.")
                return
            self._clear()
            self._timer = self._timer_factory(self.config.session_duration_seconds, self.stop)
            self._state = SessionState.READING
            self._timer.start()
            logger.info("Session started – duration=%ds", self.config.session_duration_seconds)

    def stop(self) -> Optional[SessionRecord]:
        """Finish the reading, freeze derived values and return the record."""
        with self._lock:
            if self._state is not SessionState.READING:
                return self._record
            timer = self._cancel_timer()
            self._state = SessionState.FINISHED
            bpm = self._heart_rate.last_bpm
            self._glucose = estimate_glucose(bpm, self._rng)
            hrv = self._hrv
            self._record = SessionRecord(
                timestamp=self._clock(),
                heart_rate=bpm,
                glucose_estimate=self._glucose.value if self._glucose else None,
                glucose_category=self._glucose.category.value if self._glucose else None,
                condition=hrv.condition.value if hrv and hrv.condition else None,
                hrv=hrv.hrv if hrv else None,
                stress=hrv.stress.value if hrv and hrv.stress else None,
            )
            logger.info(
                "Session finished – heart_rate=%s condition=%s samples=%d",
                bpm, self._record.condition, len(self._buffer),
            )
            record = self._record
        self._join_timer(timer)
        return record

    def reset(self) -> None:
        """Return to idle, dropping the buffer and every derived value."""
        with self._lock:
            timer = self._cancel_timer()
            self._clear()
            self._state = SessionState.IDLE
            logger.info("Session reset.")
        self._join_timer(timer)

    # ------------------------------------------------------------------
    # Per-frame tick
    # ------------------------------------------------------------------

    def tick(self, frame: np.ndarray, timestamp: float) -> Optional[TickUpdate]:
        """
        Run one analysis step on *frame* captured at *timestamp* (ms).

        Returns the published update, or ``None`` when the session is not
        reading or the frame was skipped.  No exception escapes.
        """
        with self._lock:
            if self._state is not SessionState.READING:
                return None
            self._timer.advance(timestamp)
            if self._state is not SessionState.READING:
                return None
            try:
                update = self._analyze(frame, timestamp)
            except InvalidRegion as exc:
                logger.warning("Frame skipped: %s", exc)
                return None
            except Exception:
                logger.exception("Tick failed; keeping last estimates.")
                return None

        self._publish(update)
        return update

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def heart_rate(self) -> Optional[int]:
        return self._heart_rate.last_bpm

    @property
    def hrv(self) -> Optional[HrvReport]:
        return self._hrv

    @property
    def glucose(self) -> Optional[GlucoseEstimate]:
        return self._glucose

    @property
    def record(self) -> Optional[SessionRecord]:
        return self._record

    @property
    def sampler(self) -> FrameSampler:
        return self._sampler

    @property
    def buffer(self) -> SignalBuffer:
        return self._buffer

    @property
    def remaining_seconds(self) -> int:
        if self._timer is None:
            return self.config.session_duration_seconds
        return self._timer.remaining_seconds

    def pulse_active(self, now: float) -> bool:
        return self._heart_rate.pulse_active(now)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _apply_config(self) -> AnalyzerConfig:
        config = self.config.validate()
        self._sampler.roi_size = config.roi_size
        self._buffer.resize(config.buffer_capacity)
        self._heart_rate.min_samples = config.min_samples
        self._heart_rate.pulse_duration_ms = config.pulse_duration_ms
        self._spectral.sample_rate = config.sample_rate
        self._spectral.band_pass_enabled = config.band_pass_enabled
        self._spectral.low_hz = config.band_low_hz
        self._spectral.high_hz = config.band_high_hz
        return config

    def _analyze(self, frame: np.ndarray, timestamp: float) -> TickUpdate:
        config = self._apply_config()

        sample = self._sampler.sample(frame, timestamp)
        x, y, w, h = self._sampler.region_for(frame)
        finger_present = self._finger_detector.is_finger(frame[y:y + h, x:x + w])

        self._buffer.push(sample)
        snapshot = self._buffer.snapshot()

        peaks = detect_peaks(snapshot.values, config.threshold_factor, config.min_peak_distance)
        bpm = self._heart_rate.update(snapshot, peaks)
        if bpm is not None:
            self._hrv = classify(bpm, snapshot.timestamps, peaks)

        spectrum = self._spectral.analyze(snapshot.values)
        quality = assess_quality(snapshot.values, config.sample_rate,
                                 finger_present, config.min_samples)

        return TickUpdate(
            latest_sample=sample,
            snapshot=snapshot,
            peaks=tuple(peaks),
            heart_rate=self._heart_rate.last_bpm,
            hrv=self._hrv,
            spectrum=spectrum,
            quality=quality,
            pulse=self._heart_rate.pulse_active(timestamp),
            remaining_seconds=self.remaining_seconds,
            buffer_fill=self._buffer.fill_ratio,
        )

    def _publish(self, update: TickUpdate) -> None:
        for sink in self._sinks:
            try:
                sink(update)
            except Exception:
                logger.exception("Sink %r failed.", sink)

    def _cancel_timer(self) -> Optional[SessionTimer]:
        timer = self._timer
        if timer is not None:
            timer.cancel()
        return timer

    @staticmethod
    def _join_timer(timer: Optional[SessionTimer]) -> None:
        # Called with the lock released: an expiring timer thread may be
        # waiting on it inside on_expire.
        if timer is not None:
            timer.join()

    def _clear(self) -> None:
        self._buffer.clear()
        self._heart_rate.reset()
        self._hrv = None
        self._glucose = None
        self._record = None


def run_session(
    camera,
    session: Session,
    clock: Optional[Callable[[], float]] = None,
    on_tick: Optional[Callable[[np.ndarray, Optional[TickUpdate]], bool]] = None,
) -> Optional[SessionRecord]:
    """
    Drive *session* with one tick per frame from *camera* until it finishes.

    *camera* is a context manager exposing ``frames()``; it is opened here and
    released on every exit path.  ``on_tick(frame, update)`` may return
    ``False`` to stop early.  ``CameraUnavailable`` from opening the camera
    propagates to the caller.

    Frames are stamped by ``clock()`` (ms).  By default that is the camera's
    own ``timestamp()`` when it has one, else :func:`monotonic_ms`.
    """
    if clock is None:
        clock = getattr(camera, "timestamp", monotonic_ms)
    with camera:
        if session.state is not SessionState.READING:
            session.start()
        try:
            for frame in camera.frames():
                if session.state is not SessionState.READING:
                    break
                update = session.tick(frame, clock())
                if on_tick is not None and on_tick(frame, update) is False:
                    break
        finally:
            session.stop()
    return session.record
