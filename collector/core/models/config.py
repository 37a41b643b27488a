"""
Configuration models for client-side signal collection.

Centralized settings for the biometrics tracker, the fingerprint
reporter and the HTTP sink that ships their output upstream.
"""

from dataclasses import dataclass


@dataclass
class TrackerConfig:
    """Configuration for biometrics tracking and signal delivery."""

    # Flush settings
    flush_interval_seconds: float = 30.0
    min_mouse_events: int = 5    # transmit only when total mouse events exceed this
    min_click_events: int = 1    # ... or total clicks exceed this

    # Sampling settings
    mouse_sample_interval_ms: int = 100
    max_mouse_events: int = 100
    max_keystroke_events: int = 100
    max_click_events: int = 50

    # Scoring settings
    alert_threshold: int = 70
    inactivity_window_seconds: float = 60.0
    idle_gap_ms: int = 5000      # gaps longer than this count as idle time

    # Ingestion endpoint
    ingestion_base_url: str = "http://localhost:8080"
    fingerprint_path: str = "/signals/fingerprint"
    biometrics_path: str = "/signals/biometrics"
    request_timeout_seconds: float = 5.0
