#!/usr/bin/env python3
"""
Redis Record Store

Key-addressable storage for block records, append-only signal history,
fingerprint ownership, moderation ban lists and the manual review queue.
Every call is bounded by the client's socket timeouts; Redis failures are
mapped onto the gateway error taxonomy:
- redis TimeoutError -> StoreTimeout
- any other RedisError -> StorageError
"""

import json
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set

import redis
import structlog
from redis.exceptions import RedisError, TimeoutError

from gateway.config import RedisConfig
from gateway.errors import StorageError, StoreTimeout
from gateway.metrics import STORE_ERRORS, STORE_DURATION
from gateway.schemas import BlockRecord

logger = structlog.get_logger(__name__)

# Key layout
BLOCK_KEY = "blocks:{subject}"
SIGNAL_KEY = "signals:{kind}:{subject_hash}"
FINGERPRINT_OWNERS_KEY = "fingerprint:owners:{fingerprint_hash}"
BANNED_USERS_KEY = "moderation:banned_users"
BANNED_DEVICES_KEY = "moderation:banned_devices"
TOKEN_KEY = "auth:tokens:{token}"
DEFAULT_REVIEW_QUEUE = "review:ban_evasion"


class RecordStore:
    """Redis-backed record store with per-key operations."""

    def __init__(self, client: redis.Redis, review_queue_key: str = DEFAULT_REVIEW_QUEUE):
        self.client = client
        self.review_queue_key = review_queue_key

    @classmethod
    def from_config(cls, config: RedisConfig, review_queue_key: str = DEFAULT_REVIEW_QUEUE) -> "RecordStore":
        """Build a store over a pooled connection (connects lazily)."""
        pool = redis.ConnectionPool(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            socket_connect_timeout=config.socket_connect_timeout,
            socket_timeout=config.socket_timeout,
            max_connections=config.max_connections,
            health_check_interval=config.health_check_interval,
            decode_responses=True
        )
        return cls(redis.Redis(connection_pool=pool), review_queue_key=review_queue_key)

    def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        start = time.perf_counter()
        try:
            return fn(*args, **kwargs)
        except TimeoutError as e:
            STORE_ERRORS.labels(operation=operation, error_type='timeout').inc()
            raise StoreTimeout(f"{operation} timed out: {e}") from e
        except RedisError as e:
            STORE_ERRORS.labels(operation=operation, error_type='redis').inc()
            raise StorageError(f"{operation} failed: {e}") from e
        finally:
            STORE_DURATION.labels(operation=operation).observe(time.perf_counter() - start)

    # === Block records ===

    def get_block(self, subject: str) -> Optional[BlockRecord]:
        """Fetch the block record for a subject key, or None."""
        fields = self._call('get_block', self.client.hgetall, BLOCK_KEY.format(subject=subject))
        if not fields:
            return None
        try:
            return BlockRecord.from_redis(subject, fields)
        except ValueError as e:
            STORE_ERRORS.labels(operation='get_block', error_type='malformed').inc()
            raise StorageError(f"Malformed block record for {subject}: {e}") from e

    def put_block(self, record: BlockRecord) -> None:
        """Replace the block record for the record's subject in one MULTI/EXEC."""
        key = BLOCK_KEY.format(subject=record.subject)
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(key)
        pipe.hset(key, mapping=record.to_redis())
        self._call('put_block', pipe.execute)

    def delete_block(self, subject: str) -> bool:
        """Delete a block record; deleting an absent record is a no-op."""
        removed = self._call('delete_block', self.client.delete, BLOCK_KEY.format(subject=subject))
        return bool(removed)

    # === Signals ===

    def append_signal(self, kind: str, subject_hash: str, session_id: str,
                      timestamp: datetime, payload: Dict[str, Any]) -> str:
        """Append a signal to the subject's history; prior entries are never overwritten."""
        key = SIGNAL_KEY.format(kind=kind, subject_hash=subject_hash)
        member = json.dumps({
            'signalId': str(uuid.uuid4()),
            'sessionId': session_id,
            'timestamp': timestamp.isoformat(),
            'payload': payload,
        }, sort_keys=True, default=str)
        self._call('append_signal', self.client.zadd, key, {member: timestamp.timestamp()})
        return key

    def add_fingerprint_owner(self, fingerprint_hash: str, user_id: str) -> None:
        self._call('add_fingerprint_owner', self.client.sadd,
                   FINGERPRINT_OWNERS_KEY.format(fingerprint_hash=fingerprint_hash), user_id)

    def get_fingerprint_owners(self, fingerprint_hash: str) -> Set[str]:
        owners = self._call('get_fingerprint_owners', self.client.smembers,
                            FINGERPRINT_OWNERS_KEY.format(fingerprint_hash=fingerprint_hash))
        return set(owners or ())

    # === Moderation lists ===

    def ban_user(self, user_id: str) -> None:
        self._call('ban_user', self.client.sadd, BANNED_USERS_KEY, user_id)

    def ban_device(self, fingerprint_hash: str) -> None:
        self._call('ban_device', self.client.sadd, BANNED_DEVICES_KEY, fingerprint_hash)

    def is_user_banned(self, user_id: str) -> bool:
        return bool(self._call('is_user_banned', self.client.sismember, BANNED_USERS_KEY, user_id))

    def is_device_banned(self, fingerprint_hash: str) -> bool:
        return bool(self._call('is_device_banned', self.client.sismember, BANNED_DEVICES_KEY, fingerprint_hash))

    def enqueue_review(self, entry: Dict[str, Any], timestamp: datetime) -> None:
        """Queue a ban-evasion match for manual review."""
        member = json.dumps(entry, sort_keys=True, default=str)
        self._call('enqueue_review', self.client.zadd, self.review_queue_key, {member: timestamp.timestamp()})

    # === Identity ===

    def resolve_token(self, token: str) -> Optional[str]:
        """Map a session token to its user id."""
        return self._call('resolve_token', self.client.get, TOKEN_KEY.format(token=token))

    # === Health ===

    def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            return bool(self._call('ping', self.client.ping))
        except StorageError as e:
            logger.warning("Record store health check failed", error=str(e))
            return False

    def close(self) -> None:
        self.client.close()
