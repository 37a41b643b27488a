#!/usr/bin/env python3
"""
Block Enforcement Engine

Decides whether a gated action (sign-up) is allowed for the requesting IP:
- Resolves the client IP from the forwarded-address chain
- Country-scope blocks take precedence over IP-scope blocks
- Expired temporary records are treated as absent and lazily deleted
- A timed-out IP lookup fails open; any other lookup failure is surfaced
"""

import math
import re
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Protocol

import structlog

from gateway.errors import StorageError, StoreTimeout
from gateway.metrics import VERDICTS, FAIL_OPENS, EXPIRED_REMOVED
from gateway.schemas import BlockRecord, BlockType, Verdict, country_block_key
from gateway.store import RecordStore

logger = structlog.get_logger(__name__)

UNKNOWN_IP = "unknown"
SECONDS_PER_HOUR = 3600

COUNTRY_CODE_PATTERN = re.compile(r"^[A-Za-z]{2}$")


def extract_client_ip(headers: Mapping[str, str]) -> str:
    """Left-most x-forwarded-for entry, then x-real-ip, then "unknown"."""
    forwarded = headers.get('x-forwarded-for')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first

    real_ip = (headers.get('x-real-ip') or '').strip()
    return real_ip or UNKNOWN_IP


def hours_remaining(expires_at: datetime, now: datetime) -> int:
    """Whole hours until expiry, rounded up and never below 1."""
    seconds = (expires_at - now).total_seconds()
    return max(1, math.ceil(seconds / SECONDS_PER_HOUR))


def _retry_phrase(expires_at: Optional[datetime], now: datetime) -> str:
    if expires_at is None:
        return ""
    hours = hours_remaining(expires_at, now)
    return f" Please try again in {hours} {'hour' if hours == 1 else 'hours'}."


class CountryResolver(Protocol):
    def resolve(self, ip: str, headers: Mapping[str, str]) -> Optional[str]:
        """Return an ISO country code for the request, or None."""
        ...


class HeaderCountryResolver:
    """Read a country code set by an upstream proxy (e.g. cf-ipcountry)."""

    def __init__(self, header: str = "cf-ipcountry"):
        self.header = header.lower()

    def resolve(self, ip: str, headers: Mapping[str, str]) -> Optional[str]:
        value = (headers.get(self.header) or '').strip()
        if COUNTRY_CODE_PATTERN.match(value):
            return value.upper()
        return None


class BlockEnforcementEngine:
    """Evaluate IP and country block records for a request."""

    def __init__(self,
                 store: RecordStore,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
                 country_resolver: Optional[CountryResolver] = None):
        self.store = store
        self.clock = clock
        self.country_resolver = country_resolver

    def check_request(self, headers: Mapping[str, str]) -> Verdict:
        """Resolve the client IP from request headers and evaluate it."""
        return self.check(extract_client_ip(headers), headers)

    def check(self, ip: str, headers: Optional[Mapping[str, str]] = None) -> Verdict:
        """
        Evaluate active blocks for an IP.

        Args:
            ip: Client IP string (may be "unknown")
            headers: Request headers, used only for optional country resolution

        Returns:
            Verdict; blocked=False when no active block applies

        Raises:
            StorageError: the IP record lookup failed for a reason other than a timeout
        """
        now = self.clock()

        try:
            ip_record = self.store.get_block(ip)
        except StoreTimeout as e:
            FAIL_OPENS.labels(path='ip_lookup').inc()
            VERDICTS.labels(outcome='fail_open').inc()
            logger.warning("block_lookup_timeout_fail_open", ip=ip, error=str(e))
            return Verdict(blocked=False)

        country_code = ip_record.country_code if ip_record else None
        if not country_code:
            country_code = self._resolve_country(ip, headers or {})

        if country_code:
            verdict = self._evaluate_country(country_code, now)
            if verdict is not None:
                VERDICTS.labels(outcome='country').inc()
                return verdict

        verdict = self._evaluate_ip(ip_record, now)
        VERDICTS.labels(outcome='ip' if verdict.blocked else 'allowed').inc()
        return verdict

    def _resolve_country(self, ip: str, headers: Mapping[str, str]) -> Optional[str]:
        if self.country_resolver is None:
            return None
        try:
            return self.country_resolver.resolve(ip, headers)
        except Exception as e:
            FAIL_OPENS.labels(path='country_resolution').inc()
            logger.warning("country_resolution_failed", ip=ip, error=str(e))
            return None

    def _evaluate_country(self, country_code: str, now: datetime) -> Optional[Verdict]:
        subject = country_block_key(country_code)
        try:
            record = self.store.get_block(subject)
        except StorageError as e:
            FAIL_OPENS.labels(path='country_lookup').inc()
            logger.warning("country_resolution_failed", country_code=country_code, error=str(e))
            return None

        if record is None:
            return None
        if record.is_expired(now):
            self._remove_expired(record, scope=BlockType.COUNTRY)
            return None

        if record.is_permanent:
            message = (f"Account creation is not available from your country ({country_code}). "
                       "Please contact support if you believe this is an error.")
        else:
            message = (f"Account creation is temporarily restricted from your country ({country_code})."
                       + _retry_phrase(record.block_expires_at, now))

        return Verdict(
            blocked=True,
            reason=record.reason or f"All signups from {country_code} are temporarily blocked",
            message=message,
            block_type=BlockType.COUNTRY,
            is_permanent=record.is_permanent,
            expires_at=record.block_expires_at,
        )

    def _evaluate_ip(self, record: Optional[BlockRecord], now: datetime) -> Verdict:
        if record is None:
            return Verdict(blocked=False)
        if record.is_expired(now):
            self._remove_expired(record, scope=BlockType.IP)
            return Verdict(blocked=False)

        if record.is_permanent:
            message = ("Account creation is not available from your IP address. "
                       "Please contact support if you believe this is an error.")
        else:
            message = ("Account creation is temporarily restricted from your IP address."
                       + _retry_phrase(record.block_expires_at, now))

        return Verdict(
            blocked=True,
            reason=record.reason,
            message=message,
            block_type=BlockType.IP,
            is_permanent=record.is_permanent,
            expires_at=record.block_expires_at,
        )

    def _remove_expired(self, record: BlockRecord, scope: BlockType) -> None:
        """Lazy deletion; a concurrent delete or a failed delete is harmless."""
        try:
            removed = self.store.delete_block(record.subject)
        except StorageError as e:
            logger.warning("Expired block removal failed", subject=record.subject, error=str(e))
            return

        if removed:
            EXPIRED_REMOVED.labels(scope=scope.value).inc()
        logger.info("expired_block_removed",
                    subject=record.subject,
                    scope=scope.value,
                    expired_at=record.block_expires_at.isoformat() if record.block_expires_at else None)
