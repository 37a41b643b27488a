"""
Shared Prometheus metrics for client-side collectors.

Centralized metric definitions to avoid duplicate registrations
across the fingerprint and biometrics modules.
"""

from prometheus_client import Counter, Gauge, Histogram

# Interaction metrics
EVENTS_RECORDED = Counter(
    'collector_events_recorded_total',
    'Interaction events accepted by the tracker',
    ['event_kind']
)

EVENTS_THROTTLED = Counter(
    'collector_events_throttled_total',
    'Mouse samples dropped by the sampling throttle'
)

# Flush metrics
FLUSHES = Counter(
    'collector_biometrics_flushes_total',
    'Biometrics flush attempts',
    ['outcome']
)

BOT_SCORE = Histogram(
    'collector_bot_likelihood_score',
    'Distribution of computed bot likelihood scores',
    buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100)
)

BUFFER_SIZE = Gauge(
    'collector_buffer_size',
    'Retained events per buffer',
    ['buffer']
)

# Fingerprint metrics
FINGERPRINTS_COLLECTED = Counter(
    'collector_fingerprints_collected_total',
    'Fingerprint snapshots produced',
    ['trigger']
)

SIGNAL_SOURCE_FAILURES = Counter(
    'collector_signal_source_failures_total',
    'Signal sources that raised or were unavailable',
    ['signal']
)
