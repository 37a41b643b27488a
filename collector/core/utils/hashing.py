"""
Canonical hashing for device fingerprints.

Shared by the client-side collector and the ingestion service so both
derive the same stable identifier from the same signal mapping.
"""

import json
import hashlib
from typing import Any, Mapping


def canonical_signals(signals: Mapping[str, Any]) -> str:
    """Serialize a signal mapping independent of insertion order."""
    return json.dumps(
        dict(signals),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )


def fingerprint_hash(signals: Mapping[str, Any]) -> str:
    """SHA-256 hex digest over the canonical signal set."""
    return hashlib.sha256(canonical_signals(signals).encode("utf-8")).hexdigest()
