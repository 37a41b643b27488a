"""
Signal snapshot models produced by the collectors.

DeviceFingerprint is an immutable snapshot of device attributes plus the
derived stable hash; BiometricsSample is one flush of a tracker's
cumulative behavioral features and its bot likelihood score.
"""

from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class DeviceFingerprint(BaseModel):
    """Immutable device fingerprint snapshot."""

    model_config = ConfigDict(frozen=True)

    signals: Mapping[str, Any] = Field(description="Ordered signal name -> value mapping (read-only)")
    fingerprint_hash: str = Field(description="SHA-256 over the canonical signal set")
    collected_at: datetime = Field(description="Collection timestamp (UTC)")

    @field_validator('signals')
    @classmethod
    def freeze_signals(cls, v):
        return MappingProxyType(dict(v))

    @field_serializer('signals')
    def serialize_signals(self, v):
        return dict(v)

    def to_payload(self, session_id: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Build the ingestion endpoint request body."""
        return {
            'fingerprintHash': self.fingerprint_hash,
            'signals': dict(self.signals),
            'collectedAt': self.collected_at.isoformat(),
            'sessionId': session_id,
            'userId': user_id,
        }


class BiometricsSample(BaseModel):
    """Behavioral features evaluated over a session's cumulative window."""

    session_id: str

    # Mouse metrics
    avg_mouse_velocity: float = 0.0
    mouse_velocity_variance: float = 0.0
    avg_mouse_acceleration: float = 0.0
    mouse_path_curvature: float = 0.0
    total_mouse_events: int = 0

    # Keystroke metrics
    avg_keystroke_interval: float = 0.0
    keystroke_interval_variance: float = 0.0
    total_keystroke_events: int = 0

    # Click metrics
    time_to_first_click: Optional[float] = None
    avg_click_interval: float = 0.0
    click_interval_variance: float = 0.0
    total_click_events: int = 0
    click_accuracy_score: float = 100.0

    # Session metrics
    observed_ms: int = 0
    idle_ratio: float = 0.0

    # Bot assessment
    bot_likelihood_score: int = Field(default=0, ge=0, le=100)
    bot_indicators: List[str] = Field(default_factory=list)

    def is_transmittable(self, min_mouse_events: int, min_click_events: int) -> bool:
        """Whether enough interaction was observed to be worth sending."""
        return self.total_mouse_events > min_mouse_events or self.total_click_events > min_click_events

    def to_payload(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Build the ingestion endpoint request body (camelCase wire names)."""
        return {
            'sessionId': self.session_id,
            'userId': user_id,
            'avgMouseVelocity': self.avg_mouse_velocity,
            'mouseVelocityVariance': self.mouse_velocity_variance,
            'avgMouseAcceleration': self.avg_mouse_acceleration,
            'mousePathCurvature': self.mouse_path_curvature,
            'totalMouseEvents': self.total_mouse_events,
            'avgKeystrokeInterval': self.avg_keystroke_interval,
            'keystrokeIntervalVariance': self.keystroke_interval_variance,
            'totalKeystrokeEvents': self.total_keystroke_events,
            'timeToFirstClick': self.time_to_first_click,
            'avgClickInterval': self.avg_click_interval,
            'clickIntervalVariance': self.click_interval_variance,
            'totalClickEvents': self.total_click_events,
            'clickAccuracyScore': self.click_accuracy_score,
            'observedMs': self.observed_ms,
            'idleRatio': self.idle_ratio,
            'botLikelihoodScore': self.bot_likelihood_score,
            'botIndicators': list(self.bot_indicators),
        }
