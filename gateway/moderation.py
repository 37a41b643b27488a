"""
Moderation write path.

Creates and removes the block records the enforcement engine reads, and
maintains the banned account and device lists used by ban-evasion
correlation.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog

from gateway.enforcement import COUNTRY_CODE_PATTERN
from gateway.errors import ValidationError
from gateway.schemas import BlockRecord, country_block_key
from gateway.store import RecordStore

logger = structlog.get_logger(__name__)


class ModerationService:
    """Block, unblock and ban operations for moderators."""

    def __init__(self, store: RecordStore,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.store = store
        self.clock = clock

    def _expiry(self, duration_hours: Optional[float], permanent: bool) -> Optional[datetime]:
        if permanent or duration_hours is None:
            return None
        if duration_hours <= 0:
            raise ValidationError("duration_hours must be positive")
        return self.clock() + timedelta(hours=duration_hours)

    @staticmethod
    def _normalize_country(country_code: str) -> str:
        if not country_code or not COUNTRY_CODE_PATTERN.match(country_code):
            raise ValidationError(f"Invalid ISO country code: {country_code!r}")
        return country_code.upper()

    def block_ip(self, ip: str, reason: str,
                 duration_hours: Optional[float] = None,
                 permanent: bool = False,
                 country_code: Optional[str] = None,
                 user_id: Optional[str] = None,
                 metadata: Optional[Dict[str, Any]] = None) -> BlockRecord:
        """Block an IP; without a duration the block stays until removed."""
        if not ip or not ip.strip():
            raise ValidationError("ip is required")

        record = BlockRecord(
            subject=ip.strip(),
            reason=reason,
            is_permanent=permanent,
            block_expires_at=self._expiry(duration_hours, permanent),
            country_code=self._normalize_country(country_code) if country_code else None,
            blocked_at=self.clock(),
            associated_user_id=user_id,
            metadata=metadata or {},
        )
        self.store.put_block(record)
        logger.info("IP blocked", ip=record.subject, permanent=permanent,
                    expires_at=record.block_expires_at.isoformat() if record.block_expires_at else None)
        return record

    def block_country(self, country_code: str,
                      duration_hours: Optional[float] = 24,
                      reason: Optional[str] = None,
                      permanent: bool = False) -> BlockRecord:
        """Block all sign-ups from a country for a number of hours."""
        code = self._normalize_country(country_code)
        record = BlockRecord(
            subject=country_block_key(code),
            reason=reason or f"All signups from {code} are temporarily blocked",
            is_permanent=permanent,
            block_expires_at=self._expiry(duration_hours, permanent),
            blocked_at=self.clock(),
            metadata={'type': 'country_block', 'country_code': code},
        )
        self.store.put_block(record)
        logger.info("Country blocked", country_code=code, permanent=permanent,
                    expires_at=record.block_expires_at.isoformat() if record.block_expires_at else None)
        return record

    def unblock(self, subject: str) -> bool:
        """Remove the block for an IP or a COUNTRY_BLOCK_<code> subject."""
        removed = self.store.delete_block(subject)
        logger.info("Block removed" if removed else "No block to remove", subject=subject)
        return removed

    def unblock_country(self, country_code: str) -> bool:
        return self.unblock(country_block_key(self._normalize_country(country_code)))

    def ban_user(self, user_id: str) -> None:
        if not user_id:
            raise ValidationError("user_id is required")
        self.store.ban_user(user_id)
        logger.info("User banned", user_id=user_id)

    def ban_device(self, fingerprint_hash: str) -> None:
        if not fingerprint_hash:
            raise ValidationError("fingerprint_hash is required")
        self.store.ban_device(fingerprint_hash)
        logger.info("Device banned", fingerprint_hash=fingerprint_hash)
