#!/usr/bin/env python3
"""
Records, Verdicts and Request Schemas for the Abuse Gateway

Pydantic models for the persisted block records, the enforcement verdict,
the signal ingestion request bodies and the health endpoints. Wire names
are camelCase where the client contract uses them.
"""

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

COUNTRY_BLOCK_PREFIX = "COUNTRY_BLOCK_"
ISO_COUNTRY = re.compile(r"^[A-Z]{2}$")
TRUTHY = ("true", "1", "yes")


def country_block_key(country_code: str) -> str:
    """Synthetic subject key for a country-scope block."""
    return f"{COUNTRY_BLOCK_PREFIX}{country_code.upper()}"


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BlockType(str, Enum):
    """Scope of the block that produced a verdict."""
    IP = "ip"
    COUNTRY = "country"


# === Block Records ===

class BlockRecord(BaseModel):
    """Stored decision denying a gated action to an IP or a country."""

    subject: str = Field(description="IP address or COUNTRY_BLOCK_<code>", min_length=1)
    reason: Optional[str] = Field(default=None, description="Moderator-supplied reason")
    is_permanent: bool = Field(default=False, description="Permanent blocks never expire")
    block_expires_at: Optional[datetime] = Field(
        default=None,
        description="Expiry timestamp (UTC); meaningful only when not permanent"
    )
    country_code: Optional[str] = Field(
        default=None,
        description="Resolved ISO country of an IP-scope subject",
        pattern=r"^[A-Z]{2}$"
    )
    blocked_at: Optional[datetime] = Field(default=None, description="Creation timestamp (UTC)")
    associated_user_id: Optional[str] = Field(default=None, description="Account that triggered the block")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form moderation context")

    @field_validator('country_code', mode='before')
    @classmethod
    def normalize_country_code(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v

    @property
    def is_country_scope(self) -> bool:
        return self.subject.startswith(COUNTRY_BLOCK_PREFIX)

    def is_expired(self, now: datetime) -> bool:
        """Expired records are inert; permanent or open-ended ones never expire."""
        if self.is_permanent or self.block_expires_at is None:
            return False
        return _ensure_utc(self.block_expires_at) < now

    def to_redis(self) -> Dict[str, str]:
        """Convert record fields to Redis-compatible strings."""
        serialized = {}
        for key, value in self.model_dump(exclude={'subject'}).items():
            if value is None:
                serialized[key] = "null"
            elif isinstance(value, bool):
                serialized[key] = "true" if value else "false"
            elif isinstance(value, datetime):
                serialized[key] = _ensure_utc(value).isoformat()
            elif isinstance(value, str):
                serialized[key] = value
            else:
                serialized[key] = json.dumps(value)
        return serialized

    @classmethod
    def from_redis(cls, subject: str, fields: Mapping[str, str]) -> "BlockRecord":
        """Rebuild a record from a Redis hash (raises ValueError when malformed)."""
        def _get(name: str) -> Optional[str]:
            value = fields.get(name)
            return None if value in (None, "", "null") else value

        expires_at = _get('block_expires_at')
        blocked_at = _get('blocked_at')
        metadata = _get('metadata')
        # Unusable country codes on IP records are ignored so the IP block still applies
        country_code = (_get('country_code') or '').strip().upper()

        return cls(
            subject=subject,
            reason=_get('reason'),
            is_permanent=str(fields.get('is_permanent', '')).strip().lower() in TRUTHY,
            block_expires_at=_ensure_utc(datetime.fromisoformat(expires_at)) if expires_at else None,
            country_code=country_code if ISO_COUNTRY.match(country_code) else None,
            blocked_at=_ensure_utc(datetime.fromisoformat(blocked_at)) if blocked_at else None,
            associated_user_id=_get('associated_user_id'),
            metadata=json.loads(metadata) if metadata else {},
        )


class Verdict(BaseModel):
    """Block enforcement decision returned to the gated flow."""

    model_config = ConfigDict(populate_by_name=True)

    blocked: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    block_type: Optional[BlockType] = Field(default=None, alias="blockType")
    is_permanent: Optional[bool] = None
    expires_at: Optional[datetime] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


# === Ingestion Requests ===

class SignalRequest(BaseModel):
    """Common ingestion request fields; unknown client fields are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128)
    user_id: Optional[str] = Field(default=None, alias="userId", max_length=128)
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Additional client metadata")


class FingerprintRequest(SignalRequest):
    """Device fingerprint submission."""

    fingerprint_hash: str = Field(..., alias="fingerprintHash", min_length=1, max_length=128)
    signals: Optional[Dict[str, Any]] = Field(default=None, description="Raw signal mapping")
    collected_at: Optional[datetime] = Field(default=None, alias="collectedAt")


class BiometricsRequest(SignalRequest):
    """Behavioral biometrics submission."""

    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=128)
    fingerprint_hash: Optional[str] = Field(default=None, alias="fingerprintHash", max_length=128)
    total_mouse_events: int = Field(default=0, alias="totalMouseEvents", ge=0)
    total_click_events: int = Field(default=0, alias="totalClickEvents", ge=0)
    total_keystroke_events: int = Field(default=0, alias="totalKeystrokeEvents", ge=0)
    bot_likelihood_score: int = Field(default=0, alias="botLikelihoodScore", ge=0, le=100)
    bot_indicators: List[str] = Field(default_factory=list, alias="botIndicators")


# === Health Models ===

class HealthStatus(str, Enum):
    """Health status values."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(description="Overall health status")
    timestamp: datetime = Field(description="Health check timestamp")
    version: str = Field(description="Service version")
    components: Dict[str, Dict[str, Any]] = Field(description="Health status of individual components")
    uptime_seconds: float = Field(description="Service uptime in seconds")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(description="Whether service is ready to handle requests")
    timestamp: datetime = Field(description="Readiness check timestamp")
    redis_connected: bool = Field(description="Whether Redis is connected")
