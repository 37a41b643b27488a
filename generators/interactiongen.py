#!/usr/bin/env python3
"""
Synthetic interaction generators for biometrics simulation.

Produces realistic human-like and scripted (bot-like) interaction
streams and replays them into a BiometricsTracker through the same
event-source interface a live UI bridge would use:
- Human: curved jittered mouse paths, irregular typing, hesitant clicks
- Scripted: straight constant-velocity moves, metronomic input, instant clicks
"""

import sys
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import click
import numpy as np
import structlog

from collector.core.models.config import TrackerConfig
from collector.core.models.events import InteractionEvent, InteractionKind
from collector.core.processors.biometrics import BiometricsTracker
from collector.core.sinks.http_sink import HttpSignalSink

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CLICK_TARGETS = ['button', 'a', 'input', 'label', 'div']
TYPED_KEYS = ['a', 'e', 's', 't', 'Backspace', 'Shift', 'Enter']


class ReplayClock:
    """Millisecond clock advanced by the replayed event timestamps."""

    def __init__(self, now_ms: int = 0):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


class ReplayEventSource:
    """Event source that pushes a pre-built event list to subscribers."""

    def __init__(self, clock: Optional[ReplayClock] = None):
        self.clock = clock
        self._callbacks: List[Callable[[InteractionEvent], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[InteractionEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def replay(self, events: List[InteractionEvent]) -> int:
        """Dispatch events in order; returns the number dispatched."""
        for event in events:
            if self.clock is not None:
                self.clock.now_ms = max(self.clock.now_ms, event.timestamp)
            with self._lock:
                callbacks = list(self._callbacks)
            for callback in callbacks:
                callback(event)
        return len(events)


class BaseInteractionGenerator(ABC):
    """Base class for synthetic interaction streams."""

    def __init__(self, start_ms: int = 0, seed: Optional[int] = None):
        """
        Initialize the generator.

        Args:
            start_ms: Timestamp of the simulated session start
            seed: Random seed for reproducible streams
        """
        self.start_ms = start_ms
        self.rng = np.random.default_rng(seed)

    @abstractmethod
    def generate(self, duration_ms: int) -> List[InteractionEvent]:
        """Generate a time-ordered event stream covering duration_ms."""
        pass

    @staticmethod
    def _sorted(events: List[InteractionEvent]) -> List[InteractionEvent]:
        return sorted(events, key=lambda e: e.timestamp)


class HumanInteractionGenerator(BaseInteractionGenerator):
    """Human-like input: curved paths, jitter and irregular timing."""

    def generate(self, duration_ms: int) -> List[InteractionEvent]:
        events: List[InteractionEvent] = []
        end_ms = self.start_ms + duration_ms

        # Mouse: drift along a wandering path with positional jitter
        t = self.start_ms + int(self.rng.integers(50, 400))
        x, y = 400.0, 300.0
        heading = float(self.rng.uniform(0, 2 * np.pi))
        while t < end_ms:
            heading += float(self.rng.normal(0, 0.6))
            step = float(self.rng.uniform(15, 70))
            x = float(np.clip(x + step * np.cos(heading) + self.rng.normal(0, 6), 0, 1920))
            y = float(np.clip(y + step * np.sin(heading) + self.rng.normal(0, 6), 0, 1080))
            events.append(InteractionEvent(kind=InteractionKind.MOUSE_MOVE, timestamp=t, x=x, y=y))
            t += int(self.rng.integers(100, 260))

        # Clicks: hesitate before the first one, then lognormal gaps
        t = self.start_ms + int(self.rng.integers(1200, 3000))
        while t < end_ms:
            target = str(self.rng.choice(CLICK_TARGETS)) if self.rng.random() > 0.1 else 'unknown'
            events.append(InteractionEvent(kind=InteractionKind.CLICK, timestamp=t,
                                           x=x, y=y, target=target))
            t += int(np.clip(self.rng.lognormal(7.3, 0.5), 300, 20000))

        # Keystrokes: bursts with irregular inter-key timing
        t = self.start_ms + int(self.rng.integers(2000, 5000))
        while t < end_ms:
            key = str(self.rng.choice(TYPED_KEYS))
            events.append(InteractionEvent(kind=InteractionKind.KEYSTROKE, timestamp=t, key=key))
            t += int(np.clip(self.rng.normal(180, 70), 60, 600))

        return self._sorted(events)


class ScriptedInteractionGenerator(BaseInteractionGenerator):
    """Automation-like input: straight lines, fixed cadence, instant clicks."""

    def __init__(self, start_ms: int = 0, seed: Optional[int] = None,
                 mouse_interval_ms: int = 100, key_interval_ms: int = 20, click_interval_ms: int = 100):
        super().__init__(start_ms=start_ms, seed=seed)
        self.mouse_interval_ms = mouse_interval_ms
        self.key_interval_ms = key_interval_ms
        self.click_interval_ms = click_interval_ms

    def generate(self, duration_ms: int) -> List[InteractionEvent]:
        events: List[InteractionEvent] = []
        end_ms = self.start_ms + duration_ms

        for i, t in enumerate(range(self.start_ms + self.mouse_interval_ms, end_ms, self.mouse_interval_ms)):
            events.append(InteractionEvent(kind=InteractionKind.MOUSE_MOVE, timestamp=t,
                                           x=float(10 + 5 * i), y=float(10 + 5 * i)))

        for t in range(self.start_ms + 50, end_ms, self.click_interval_ms):
            events.append(InteractionEvent(kind=InteractionKind.CLICK, timestamp=t, target='button'))

        for t in range(self.start_ms + 25, end_ms, self.key_interval_ms):
            events.append(InteractionEvent(kind=InteractionKind.KEYSTROKE, timestamp=t, key='a'))

        return self._sorted(events)


GENERATORS = {
    'human': HumanInteractionGenerator,
    'scripted': ScriptedInteractionGenerator,
}


def simulate_session(profile: str, duration_seconds: float, seed: Optional[int] = None,
                     config: Optional[TrackerConfig] = None, sink=None) -> BiometricsTracker:
    """Replay one synthetic session through a tracker and flush it once."""
    config = config or TrackerConfig()
    clock = ReplayClock(now_ms=0)
    source = ReplayEventSource(clock=clock)

    tracker = BiometricsTracker(config, source, sink=sink, clock=clock)
    tracker.start(run_timer=False)

    events = GENERATORS[profile](start_ms=0, seed=seed).generate(int(duration_seconds * 1000))
    source.replay(events)
    clock.now_ms = int(duration_seconds * 1000)
    tracker.flush()
    return tracker


@click.command()
@click.option('--profile', '-p', type=click.Choice(sorted(GENERATORS)), default='human', help='Interaction profile')
@click.option('--duration', '-d', default=30.0, type=float, help='Simulated session length in seconds')
@click.option('--seed', default=None, type=int, help='Random seed')
@click.option('--ingestion-url', default=None, help='Send the flushed sample to this ingestion base URL')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(profile, duration, seed, ingestion_url, verbose):
    """Simulate an interaction session and print its biometrics sample."""

    # Tracker logs go through stdlib logging so stdout carries only the sample
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.WARNING)

    try:
        config = TrackerConfig()
        sink = None
        if ingestion_url:
            config.ingestion_base_url = ingestion_url
            sink = HttpSignalSink(config)

        tracker = simulate_session(profile, duration, seed=seed, config=config, sink=sink)
        sample = tracker.stop()
        click.echo(json.dumps(sample.to_payload(), indent=2))

    except Exception as e:
        logger.error(f"Simulation failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
