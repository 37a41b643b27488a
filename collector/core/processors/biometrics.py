"""
Behavioral biometrics tracking.

Consumes timestamped interaction events from an injected event source,
keeps bounded per-kind buffers plus cumulative counters, and on a fixed
cadence reduces the session's behavior to date into a BiometricsSample
with a 0-100 bot likelihood score. Samples with too little interaction
are discarded instead of transmitted.

State machine: IDLE -> STARTED -> (SAMPLING <-> FLUSHING) -> STOPPED
"""

import math
import time
import uuid
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Any, Protocol
import numpy as np
import structlog

from collector.core.models.config import TrackerConfig
from collector.core.models.events import InteractionEvent, InteractionKind
from collector.core.models.signals import BiometricsSample
from collector.core.utils.windowing import BoundedEventBuffer
from collector.core.utils.metrics import EVENTS_RECORDED, EVENTS_THROTTLED, FLUSHES, BOT_SCORE, BUFFER_SIZE

logger = structlog.get_logger(__name__)

EventCallback = Callable[[InteractionEvent], None]


class EventSource(Protocol):
    """Producer of interaction events (DOM bridge, replay, synthetic generator)."""

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        ...


class BiometricsSink(Protocol):
    def send_biometrics(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


class TrackerState(str, Enum):
    """Biometrics tracker lifecycle states."""
    IDLE = "idle"
    STARTED = "started"
    SAMPLING = "sampling"
    FLUSHING = "flushing"
    STOPPED = "stopped"


def _variance(values: List[float]) -> float:
    return float(np.var(values)) if values else 0.0


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def _mouse_velocities(points: List[Tuple[int, float, float]]) -> List[float]:
    """Pixels per second between consecutive samples."""
    velocities = []
    for (t1, x1, y1), (t2, x2, y2) in zip(points[:-1], points[1:]):
        dt = (t2 - t1) / 1000.0
        velocities.append(math.hypot(x2 - x1, y2 - y1) / dt if dt > 0 else 0.0)
    return velocities


def _path_curvature(points: List[Tuple[int, float, float]]) -> float:
    """Mean absolute heading change in radians (straighter = lower)."""
    if len(points) < 3:
        return 0.0

    changes = []
    for (_, x0, y0), (_, x1, y1), (_, x2, y2) in zip(points[:-2], points[1:-1], points[2:]):
        heading_in = math.atan2(y1 - y0, x1 - x0)
        heading_out = math.atan2(y2 - y1, x2 - x1)
        delta = (heading_out - heading_in + math.pi) % (2 * math.pi) - math.pi
        changes.append(abs(delta))
    return _mean(changes)


def _intervals(timestamps: List[int]) -> List[float]:
    return [float(b - a) for a, b in zip(timestamps[:-1], timestamps[1:])]


def score_biometrics(sample: BiometricsSample, config: TrackerConfig) -> Tuple[int, List[str]]:
    """
    Deterministic additive bot likelihood heuristic.

    Every rule only adds points as behavior becomes more mechanical
    (lower variance, straighter paths, faster or more regular cadence),
    so the score is non-decreasing in movement uniformity. Capped at 100.
    """
    indicators: List[str] = []
    score = 0

    if sample.total_mouse_events > 10 and sample.mouse_velocity_variance < 100:
        indicators.append('Low mouse velocity variance (robotic movement)')
        score += 25

    if sample.total_mouse_events > 10 and sample.mouse_path_curvature < 0.1:
        indicators.append('Unnaturally straight mouse movements')
        score += 20

    if sample.total_keystroke_events > 6:
        if sample.keystroke_interval_variance < 100:
            indicators.append('Perfectly consistent keystroke timing')
            score += 30
        if sample.avg_keystroke_interval < 50:
            indicators.append('Superhuman typing speed')
            score += 25

    if sample.time_to_first_click is not None and sample.time_to_first_click < 100:
        indicators.append('Instant first click')
        score += 20

    if sample.total_click_events >= 3 and (
            sample.avg_click_interval < 150 or sample.click_interval_variance < 100):
        indicators.append('Uniform or implausibly fast click cadence')
        score += 20

    if sample.click_accuracy_score < 50 and sample.total_click_events > 5:
        indicators.append('Low click accuracy (random clicks)')
        score += 15

    if sample.total_mouse_events == 0 and sample.total_click_events > 0:
        indicators.append('Clicks without mouse movement')
        score += 40

    total_interactions = sample.total_mouse_events + sample.total_click_events + sample.total_keystroke_events
    if sample.observed_ms >= config.inactivity_window_seconds * 1000 and total_interactions <= 2:
        indicators.append('No meaningful interaction over observation window')
        score += 15

    return min(score, 100), indicators


def compute_biometrics(session_id: str,
                       mouse_events: List[Tuple[int, float, float]],
                       keystroke_times: List[int],
                       clicks: List[Tuple[int, str]],
                       totals: Dict[str, int],
                       session_start_ms: int,
                       now_ms: int,
                       first_click_ms: Optional[int],
                       idle_ms: int,
                       config: TrackerConfig) -> BiometricsSample:
    """
    Compute biometrics features and score from buffered events.

    Args:
        mouse_events: Retained (timestamp, x, y) mouse samples, oldest first
        keystroke_times: Retained keystroke timestamps
        clicks: Retained (timestamp, target) clicks
        totals: Cumulative event counts per kind since session start
        idle_ms: Accumulated idle time across the whole session

    Returns:
        BiometricsSample with features, score and indicators populated
    """
    velocities = _mouse_velocities(mouse_events)
    accelerations = [abs(b - a) for a, b in zip(velocities[:-1], velocities[1:])]

    keystroke_intervals = _intervals(keystroke_times)
    click_intervals = _intervals([ts for ts, _ in clicks])

    clicks_on_elements = sum(1 for _, target in clicks if target != 'unknown')
    click_accuracy = (clicks_on_elements / len(clicks)) * 100 if clicks else 100.0

    observed_ms = max(0, now_ms - session_start_ms)

    sample = BiometricsSample(
        session_id=session_id,
        avg_mouse_velocity=round(_mean(velocities), 2),
        mouse_velocity_variance=round(_variance(velocities), 2),
        avg_mouse_acceleration=round(_mean(accelerations), 2),
        mouse_path_curvature=round(_path_curvature(mouse_events), 3),
        total_mouse_events=totals.get(InteractionKind.MOUSE_MOVE.value, 0),
        avg_keystroke_interval=round(_mean(keystroke_intervals), 2),
        keystroke_interval_variance=round(_variance(keystroke_intervals), 2),
        total_keystroke_events=totals.get(InteractionKind.KEYSTROKE.value, 0),
        time_to_first_click=float(first_click_ms - session_start_ms) if first_click_ms is not None else None,
        avg_click_interval=round(_mean(click_intervals), 2),
        click_interval_variance=round(_variance(click_intervals), 2),
        total_click_events=totals.get(InteractionKind.CLICK.value, 0),
        click_accuracy_score=round(click_accuracy, 1),
        observed_ms=observed_ms,
        idle_ratio=round(min(idle_ms / observed_ms, 1.0), 3) if observed_ms > 0 else 0.0,
    )

    score, indicators = score_biometrics(sample, config)
    return sample.model_copy(update={'bot_likelihood_score': score, 'bot_indicators': indicators})


class BiometricsTracker:
    """Passive interaction tracker owning one session's accumulator."""

    def __init__(self,
                 config: TrackerConfig,
                 event_source: EventSource,
                 sink: Optional[BiometricsSink] = None,
                 session_id: Optional[str] = None,
                 identity: Callable[[], Optional[str]] = lambda: None,
                 clock: Callable[[], int] = lambda: int(time.time() * 1000)):
        self.config = config
        self.session_id = session_id or str(uuid.uuid4())
        self._event_source = event_source
        self._sink = sink
        self._identity = identity
        self._clock = clock

        self._lock = threading.RLock()
        self._state = TrackerState.IDLE
        self._flush_in_flight = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None

        self._mouse = BoundedEventBuffer(config.max_mouse_events)
        self._keystrokes = BoundedEventBuffer(config.max_keystroke_events)
        self._clicks = BoundedEventBuffer(config.max_click_events)

        self._session_start_ms = 0
        self._last_mouse_ms: Optional[int] = None
        self._first_click_ms: Optional[int] = None
        self._last_activity_ms = 0
        self._idle_ms = 0

    @property
    def state(self) -> TrackerState:
        return self._state

    def start(self, run_timer: bool = True) -> None:
        """Begin listening and arm the periodic flush timer."""
        with self._lock:
            if self._state != TrackerState.IDLE:
                logger.debug("Tracker already started", session_id=self.session_id, state=self._state.value)
                return

            self._state = TrackerState.STARTED
            self._session_start_ms = self._clock()
            self._last_activity_ms = self._session_start_ms
            self._unsubscribe = self._event_source.subscribe(self.record_event)

            if run_timer:
                self._timer = threading.Thread(
                    target=self._run_timer,
                    name=f"biometrics-flush-{self.session_id[:8]}",
                    daemon=True,
                )
                self._timer.start()

            self._state = TrackerState.SAMPLING

        logger.info("Biometrics tracking started",
                    session_id=self.session_id,
                    flush_interval_seconds=self.config.flush_interval_seconds)

    def stop(self) -> Optional[BiometricsSample]:
        """Cancel the timer, detach listeners and return the final analysis."""
        with self._lock:
            if self._state == TrackerState.STOPPED:
                return None
            if self._state == TrackerState.IDLE:
                self._session_start_ms = self._last_activity_ms = self._clock()
            self._state = TrackerState.STOPPED
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            self._stop_event.set()
            timer = self._timer

        if unsubscribe:
            unsubscribe()
        if timer and timer is not threading.current_thread():
            timer.join(timeout=self.config.request_timeout_seconds + 1.0)

        final = self.analyze()
        with self._lock:
            for buffer in (self._mouse, self._keystrokes, self._clicks):
                buffer.clear()

        logger.info("Biometrics tracking stopped",
                    session_id=self.session_id,
                    bot_likelihood_score=final.bot_likelihood_score)
        return final

    def record_event(self, event: InteractionEvent) -> None:
        """Event-source callback: fold one interaction into the accumulator."""
        with self._lock:
            if self._state not in (TrackerState.STARTED, TrackerState.SAMPLING, TrackerState.FLUSHING):
                return

            ts = event.timestamp
            if event.kind == InteractionKind.MOUSE_MOVE:
                if (self._last_mouse_ms is not None
                        and ts - self._last_mouse_ms < self.config.mouse_sample_interval_ms):
                    EVENTS_THROTTLED.inc()
                    return
                self._last_mouse_ms = ts
                self._mouse.add_event(ts, (ts, event.x, event.y))
            elif event.kind == InteractionKind.CLICK:
                if self._first_click_ms is None:
                    self._first_click_ms = ts
                self._clicks.add_event(ts, (ts, event.target))
            else:
                self._keystrokes.add_event(ts, ts)

            gap = ts - self._last_activity_ms
            if gap > self.config.idle_gap_ms:
                self._idle_ms += gap
            self._last_activity_ms = max(self._last_activity_ms, ts)

        EVENTS_RECORDED.labels(event_kind=event.kind.value).inc()

    def analyze(self) -> BiometricsSample:
        """Evaluate the session's cumulative behavior to date."""
        with self._lock:
            now_ms = self._clock()
            mouse_events = [e for _, e in self._mouse.get_events()]
            keystroke_times = [e for _, e in self._keystrokes.get_events()]
            clicks = [e for _, e in self._clicks.get_events()]
            totals = {
                InteractionKind.MOUSE_MOVE.value: self._mouse.total_seen,
                InteractionKind.CLICK.value: self._clicks.total_seen,
                InteractionKind.KEYSTROKE.value: self._keystrokes.total_seen,
            }
            trailing_gap = now_ms - self._last_activity_ms
            idle_ms = self._idle_ms + (trailing_gap if trailing_gap > self.config.idle_gap_ms else 0)
            session_start_ms = self._session_start_ms
            first_click_ms = self._first_click_ms

        BUFFER_SIZE.labels(buffer='mouse').set(self._mouse.size())
        BUFFER_SIZE.labels(buffer='keystroke').set(self._keystrokes.size())
        BUFFER_SIZE.labels(buffer='click').set(self._clicks.size())

        return compute_biometrics(
            self.session_id,
            mouse_events,
            keystroke_times,
            clicks,
            totals,
            session_start_ms,
            now_ms,
            first_click_ms,
            idle_ms,
            self.config,
        )

    def flush(self) -> Optional[BiometricsSample]:
        """
        Analyze and transmit the current sample.

        Returns the transmitted sample, or None when the flush was skipped
        (another flush in flight, or too little data to be meaningful).
        """
        with self._lock:
            if self._flush_in_flight:
                FLUSHES.labels(outcome='skipped_in_flight').inc()
                logger.debug("Flush already in flight", session_id=self.session_id)
                return None
            self._flush_in_flight = True
            if self._state == TrackerState.SAMPLING:
                self._state = TrackerState.FLUSHING

        try:
            sample = self.analyze()
            BOT_SCORE.observe(sample.bot_likelihood_score)

            if not sample.is_transmittable(self.config.min_mouse_events, self.config.min_click_events):
                FLUSHES.labels(outcome='discarded_sparse').inc()
                logger.debug("Biometrics sample too sparse, not sent",
                             session_id=self.session_id,
                             total_mouse_events=sample.total_mouse_events,
                             total_click_events=sample.total_click_events)
                return None

            if self._sink is not None:
                try:
                    self._sink.send_biometrics(sample.to_payload(user_id=self._identity()))
                    FLUSHES.labels(outcome='sent').inc()
                except Exception as e:
                    FLUSHES.labels(outcome='send_failed').inc()
                    logger.error("biometrics_flush_failed", session_id=self.session_id, error=str(e))

            if sample.bot_likelihood_score >= self.config.alert_threshold:
                logger.warning("high_bot_likelihood",
                               session_id=self.session_id,
                               bot_likelihood_score=sample.bot_likelihood_score,
                               bot_indicators=sample.bot_indicators)
            return sample
        finally:
            with self._lock:
                self._flush_in_flight = False
                if self._state == TrackerState.FLUSHING:
                    self._state = TrackerState.SAMPLING

    def _run_timer(self) -> None:
        """Flush every interval until stopped."""
        while not self._stop_event.wait(self.config.flush_interval_seconds):
            try:
                self.flush()
            except Exception as e:
                FLUSHES.labels(outcome='error').inc()
                logger.exception("Biometrics flush raised", session_id=self.session_id, error=str(e))
