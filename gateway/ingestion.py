#!/usr/bin/env python3
"""
Signal Ingestion and Ban-Evasion Correlation

Accepts fingerprint and biometrics submissions, persists them append-only
keyed by (subject hash, session, timestamp), and correlates fingerprints
against banned devices and accounts. Correlation is advisory: a match is
reported and queued for review but never rejects the write, and a failed
lookup degrades to "no match".
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog

from collector.core.utils.hashing import fingerprint_hash
from gateway.errors import CorrelationFailure, StorageError, ValidationError
from gateway.identity import IdentityProvider, AnonymousIdentity
from gateway.metrics import SIGNALS_INGESTED, BAN_EVASION_MATCHES, CORRELATION_FAILURES, BOT_SCORES
from gateway.schemas import FingerprintRequest, BiometricsRequest
from gateway.store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class CorrelationResult:
    """Outcome of a ban-evasion lookup."""
    matched: bool = False
    reasons: List[str] = field(default_factory=list)
    banned_owners: List[str] = field(default_factory=list)
    other_owners: List[str] = field(default_factory=list)


class BanEvasionCorrelator:
    """Match a fingerprint hash against banned devices and prior owners."""

    def __init__(self, store: RecordStore):
        self.store = store

    def correlate(self, fingerprint: str, user_id: Optional[str]) -> CorrelationResult:
        result = CorrelationResult()
        try:
            if self.store.is_device_banned(fingerprint):
                result.reasons.append('banned_device')

            owners = self.store.get_fingerprint_owners(fingerprint)
            result.other_owners = sorted(o for o in owners if o != user_id)
            result.banned_owners = [o for o in result.other_owners if self.store.is_user_banned(o)]
        except StorageError as e:
            raise CorrelationFailure(f"Ban-evasion lookup failed: {e}") from e

        if result.banned_owners:
            result.reasons.append('banned_account')
        result.matched = bool(result.reasons)
        return result


class SignalIngestionService:
    """Persist client signals and flag ban evasion."""

    def __init__(self,
                 store: RecordStore,
                 identity: Optional[IdentityProvider] = None,
                 correlator: Optional[BanEvasionCorrelator] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
                 alert_threshold: int = 70):
        self.store = store
        self.identity = identity or AnonymousIdentity()
        self.correlator = correlator or BanEvasionCorrelator(store)
        self.clock = clock
        self.alert_threshold = alert_threshold

    def _resolve_identity(self, headers: Mapping[str, str]) -> Optional[str]:
        try:
            return self.identity.resolve(headers)
        except Exception as e:
            logger.warning("Identity resolution failed, treating request as anonymous", error=str(e))
            return None

    def ingest_fingerprint(self, request: FingerprintRequest,
                           headers: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """
        Store a fingerprint submission and run ban-evasion correlation.

        Returns:
            {"success": True, "banEvasionDetected": bool}

        Raises:
            ValidationError: raw signals do not hash to the submitted fingerprint
            StorageError: the submission could not be persisted
        """
        if request.signals is not None and fingerprint_hash(request.signals) != request.fingerprint_hash:
            SIGNALS_INGESTED.labels(kind='fingerprint', outcome='invalid').inc()
            raise ValidationError("fingerprintHash does not match the submitted signals")

        user_id = self._resolve_identity(headers or {})
        session_id = request.session_id or f"anon-{uuid.uuid4()}"
        now = self.clock()

        record = request.model_dump(mode='json', by_alias=True, exclude_none=True)
        record['userId'] = user_id
        record['sessionId'] = session_id
        if request.user_id and request.user_id != user_id:
            record['claimedUserId'] = request.user_id

        try:
            self.store.append_signal('fingerprint', request.fingerprint_hash, session_id, now, record)
        except StorageError:
            SIGNALS_INGESTED.labels(kind='fingerprint', outcome='storage_error').inc()
            raise

        if user_id:
            try:
                self._note_ownership(request.fingerprint_hash, user_id)
            except StorageError as e:
                logger.warning("Fingerprint ownership update failed",
                               fingerprint_hash=request.fingerprint_hash, user_id=user_id, error=str(e))

        detected = self._correlate(request.fingerprint_hash, user_id, session_id, now)
        SIGNALS_INGESTED.labels(kind='fingerprint', outcome='stored').inc()
        return {"success": True, "banEvasionDetected": detected}

    def _note_ownership(self, fingerprint: str, user_id: str) -> None:
        owners = self.store.get_fingerprint_owners(fingerprint)
        others = sorted(o for o in owners if o != user_id)
        if others:
            logger.info("Fingerprint shared with other accounts",
                        fingerprint_hash=fingerprint,
                        user_id=user_id,
                        other_user_ids=others)
        self.store.add_fingerprint_owner(fingerprint, user_id)

    def _correlate(self, fingerprint: str, user_id: Optional[str], session_id: str, now: datetime) -> bool:
        try:
            result = self.correlator.correlate(fingerprint, user_id)
        except CorrelationFailure as e:
            CORRELATION_FAILURES.inc()
            logger.warning("correlation_degraded", fingerprint_hash=fingerprint, error=str(e))
            return False

        if not result.matched:
            return False

        for reason in result.reasons:
            BAN_EVASION_MATCHES.labels(reason=reason).inc()
        logger.warning("ban_evasion_detected",
                       fingerprint_hash=fingerprint,
                       user_id=user_id,
                       session_id=session_id,
                       reasons=result.reasons,
                       banned_user_ids=result.banned_owners)

        try:
            self.store.enqueue_review({
                'fingerprintHash': fingerprint,
                'userId': user_id,
                'sessionId': session_id,
                'reasons': result.reasons,
                'bannedUserIds': result.banned_owners,
                'detectedAt': now.isoformat(),
            }, now)
        except StorageError as e:
            logger.warning("Review queue write failed", fingerprint_hash=fingerprint, error=str(e))
        return True

    def ingest_biometrics(self, request: BiometricsRequest,
                          headers: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Store a biometrics sample; high scores are logged for review."""
        user_id = self._resolve_identity(headers or {})
        now = self.clock()

        record = request.model_dump(mode='json', by_alias=True, exclude_none=True)
        record['userId'] = user_id
        subject = request.fingerprint_hash or request.session_id

        try:
            self.store.append_signal('biometrics', subject, request.session_id, now, record)
        except StorageError:
            SIGNALS_INGESTED.labels(kind='biometrics', outcome='storage_error').inc()
            raise

        BOT_SCORES.observe(request.bot_likelihood_score)
        SIGNALS_INGESTED.labels(kind='biometrics', outcome='stored').inc()

        if request.bot_likelihood_score >= self.alert_threshold:
            logger.warning("high_bot_likelihood",
                           session_id=request.session_id,
                           user_id=user_id,
                           bot_likelihood_score=request.bot_likelihood_score,
                           bot_indicators=request.bot_indicators)

        return {"success": True, "botLikelihoodScore": request.bot_likelihood_score}
