"""
Shared Prometheus metrics for the abuse gateway.

Centralized metric definitions to avoid duplicate registrations
across the store, enforcement and ingestion modules.
"""

from prometheus_client import Counter, Histogram

# Store metrics
STORE_ERRORS = Counter(
    'gateway_store_errors_total',
    'Record store failures',
    ['operation', 'error_type']
)

STORE_DURATION = Histogram(
    'gateway_store_operation_duration_seconds',
    'Record store call duration',
    ['operation']
)

# Enforcement metrics
VERDICTS = Counter(
    'gateway_block_verdicts_total',
    'Block enforcement verdicts',
    ['outcome']
)

FAIL_OPENS = Counter(
    'gateway_block_fail_open_total',
    'Enforcement decisions that failed open',
    ['path']
)

EXPIRED_REMOVED = Counter(
    'gateway_expired_blocks_removed_total',
    'Expired block records lazily deleted',
    ['scope']
)

# Ingestion metrics
SIGNALS_INGESTED = Counter(
    'gateway_signals_ingested_total',
    'Signal submissions by kind and outcome',
    ['kind', 'outcome']
)

BAN_EVASION_MATCHES = Counter(
    'gateway_ban_evasion_matches_total',
    'Fingerprints correlated with a banned device or account',
    ['reason']
)

CORRELATION_FAILURES = Counter(
    'gateway_correlation_failures_total',
    'Ban-evasion lookups that degraded to no match'
)

BOT_SCORES = Histogram(
    'gateway_reported_bot_likelihood_score',
    'Bot likelihood scores reported by clients',
    buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100)
)
