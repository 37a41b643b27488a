"""
Session lifecycle wiring for fingerprint reporting.

SessionEvents is a small synchronous publish/subscribe hub for auth
lifecycle events. FingerprintReporter collects and transmits a fresh
fingerprint on session start, sign-in and token refresh, never running
two collections at once.
"""

import uuid
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Any
import structlog

from collector.core.models.signals import DeviceFingerprint
from collector.core.processors.fingerprint import FingerprintCollector

logger = structlog.get_logger(__name__)


class SessionEvent(str, Enum):
    SESSION_STARTED = "session_started"
    SIGNED_IN = "signed_in"
    TOKEN_REFRESHED = "token_refreshed"
    SIGNED_OUT = "signed_out"


SessionCallback = Callable[[SessionEvent], None]


class SessionEvents:
    """Callback registry for auth lifecycle events."""

    def __init__(self):
        self._callbacks: List[SessionCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: SessionCallback) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
        return unsubscribe

    def emit(self, event: SessionEvent) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(event)


class FingerprintReporter:
    """Re-fingerprint the device on auth lifecycle events and report it."""

    TRIGGERS = (SessionEvent.SESSION_STARTED, SessionEvent.SIGNED_IN, SessionEvent.TOKEN_REFRESHED)

    def __init__(self,
                 collector: FingerprintCollector,
                 sink,
                 user_provider: Callable[[], Optional[str]] = lambda: None,
                 session_id: Optional[str] = None):
        self.collector = collector
        self.sink = sink
        self.user_provider = user_provider
        self.session_id = session_id or str(uuid.uuid4())
        self.last_fingerprint: Optional[DeviceFingerprint] = None
        self._is_collecting = False
        self._lock = threading.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, events: SessionEvents) -> None:
        """Subscribe to lifecycle events."""
        self._unsubscribe = events.subscribe(self._on_event)

    def detach(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_event(self, event: SessionEvent) -> None:
        if event in self.TRIGGERS:
            self.collect_and_send(trigger=event.value)

    def collect_and_send(self, trigger: str = "manual") -> Optional[Dict[str, Any]]:
        """
        Collect a fingerprint and send it upstream.

        Returns the ingestion response, or None when a collection was already
        running or the send failed. Failures never propagate to the caller.
        """
        with self._lock:
            if self._is_collecting:
                logger.debug("Fingerprint collection already running", trigger=trigger)
                return None
            self._is_collecting = True

        try:
            fingerprint = self.collector.collect(trigger=trigger)
            self.last_fingerprint = fingerprint
            payload = fingerprint.to_payload(session_id=self.session_id, user_id=self.user_provider())

            try:
                response = self.sink.send_fingerprint(payload)
            except Exception as e:
                logger.error("Fingerprint transmission failed", trigger=trigger, error=str(e))
                return None

            if response.get('banEvasionDetected'):
                logger.warning("ban_evasion_detected",
                               session_id=self.session_id,
                               fingerprint_hash=fingerprint.fingerprint_hash)
            return response
        finally:
            with self._lock:
                self._is_collecting = False
