"""
Device fingerprint collection.

Gathers a set of environment attributes from pluggable signal sources and
reduces them to a single DeviceFingerprint. Collection is best-effort: a
source that raises or returns None is left out of the snapshot, and a
snapshot is always produced.
"""

import os
import time
import locale
import platform
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional
import structlog

from collector.core.models.signals import DeviceFingerprint
from collector.core.utils.hashing import fingerprint_hash
from collector.core.utils.metrics import FINGERPRINTS_COLLECTED, SIGNAL_SOURCE_FAILURES

logger = structlog.get_logger(__name__)

SignalSource = Callable[[], Any]


def _timezone_offset() -> int:
    """Minutes behind UTC, matching the browser getTimezoneOffset convention."""
    offset = time.altzone if time.localtime().tm_isdst > 0 else time.timezone
    return int(offset / 60)


def _language() -> Optional[str]:
    return locale.getlocale()[0]


def default_signal_sources(user_agent: Optional[str] = None) -> Dict[str, SignalSource]:
    """Signal sources readable from the local runtime environment."""
    sources: Dict[str, SignalSource] = OrderedDict()
    sources['platform'] = platform.system
    sources['platform_release'] = platform.release
    sources['machine'] = platform.machine
    sources['cpu_cores'] = os.cpu_count
    sources['timezone_offset'] = _timezone_offset
    sources['timezone'] = lambda: time.tzname[0]
    sources['language'] = _language
    if user_agent:
        sources['user_agent'] = lambda: user_agent
    return sources


class FingerprintCollector:
    """Collect device signals into a hashed snapshot."""

    def __init__(self,
                 sources: Optional[Mapping[str, SignalSource]] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.sources: Dict[str, SignalSource] = OrderedDict(
            sources if sources is not None else default_signal_sources()
        )
        self._clock = clock

    def add_source(self, name: str, source: SignalSource) -> None:
        """Register an extra signal source (e.g. a canvas or audio hash bridge)."""
        self.sources[name] = source

    def collect(self, trigger: str = "manual") -> DeviceFingerprint:
        """Read every source and return a new fingerprint snapshot."""
        signals: Dict[str, Any] = OrderedDict()

        for name, source in self.sources.items():
            try:
                value = source()
            except Exception as e:
                SIGNAL_SOURCE_FAILURES.labels(signal=name).inc()
                logger.debug("Signal source unavailable", signal=name, error=str(e))
                continue

            if value is None:
                SIGNAL_SOURCE_FAILURES.labels(signal=name).inc()
                continue
            signals[name] = value

        snapshot = DeviceFingerprint(
            signals=signals,
            fingerprint_hash=fingerprint_hash(signals),
            collected_at=self._clock(),
        )

        FINGERPRINTS_COLLECTED.labels(trigger=trigger).inc()
        logger.debug("Fingerprint collected",
                     trigger=trigger,
                     signal_count=len(signals),
                     fingerprint_hash=snapshot.fingerprint_hash)
        return snapshot
