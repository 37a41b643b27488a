"""
Shared fixtures for gateway tests: an in-memory Redis stand-in with
per-operation failure injection, a controllable UTC clock, and a
RecordStore wired to both.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Set, Tuple

import pytest

from gateway.store import RecordStore


class MockRedisClient:
    """Mock Redis client covering the hash, set, sorted-set and string commands the store uses."""

    def __init__(self):
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.sets: Dict[str, Set[str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.strings: Dict[str, str] = {}
        self.failures: Dict[Tuple[str, Optional[str]], Exception] = {}
        self.calls = []

    def fail(self, operation: str, exc: Exception, key: Optional[str] = None) -> None:
        """Make `operation` raise `exc` (for every key, or only for `key`)."""
        self.failures[(operation, key)] = exc

    def _failure(self, operation: str, key: Optional[str] = None) -> Optional[Exception]:
        return self.failures.get((operation, key)) or self.failures.get((operation, None))

    def _check(self, operation: str, key: Optional[str] = None) -> None:
        self.calls.append((operation, key))
        exc = self._failure(operation, key)
        if exc is not None:
            raise exc

    def pipeline(self, transaction: bool = True) -> "MockPipeline":
        return MockPipeline(self)

    def hgetall(self, key: str) -> Dict[str, str]:
        self._check('hgetall', key)
        return dict(self.hashes.get(key, {}))

    def hset(self, key: str, mapping: Dict[str, Any]) -> int:
        self._check('hset', key)
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    def delete(self, *keys: str) -> int:
        for key in keys:
            self._check('delete', key)
        removed = 0
        for key in keys:
            for space in (self.hashes, self.sets, self.zsets, self.strings):
                if key in space:
                    del space[key]
                    removed += 1
        return removed

    def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self._check('zadd', key)
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    def zrange(self, key: str, start: int, end: int):
        self._check('zrange', key)
        members = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])
        members = [m for m, _ in members]
        return members[start:] if end == -1 else members[start:end + 1]

    def sadd(self, key: str, *members: str) -> int:
        self._check('sadd', key)
        target = self.sets.setdefault(key, set())
        added = len(set(members) - target)
        target.update(members)
        return added

    def smembers(self, key: str) -> Set[str]:
        self._check('smembers', key)
        return set(self.sets.get(key, set()))

    def sismember(self, key: str, member: str) -> bool:
        self._check('sismember', key)
        return member in self.sets.get(key, set())

    def get(self, key: str) -> Optional[str]:
        self._check('get', key)
        return self.strings.get(key)

    def set(self, key: str, value: str) -> bool:
        self._check('set', key)
        self.strings[key] = value
        return True

    def ping(self) -> bool:
        self._check('ping')
        return True

    def close(self) -> None:
        pass


class MockPipeline:
    """Queued commands applied all-or-nothing on execute(), like MULTI/EXEC."""

    def __init__(self, client: MockRedisClient):
        self.client = client
        self.commands = []

    def delete(self, *keys: str) -> "MockPipeline":
        self.commands.append(('delete', keys, {}))
        return self

    def hset(self, key: str, mapping: Dict[str, Any]) -> "MockPipeline":
        self.commands.append(('hset', (key,), {'mapping': mapping}))
        return self

    def execute(self):
        for operation, args, _ in self.commands:
            for key in (args if operation == 'delete' else args[:1]):
                exc = self.client._failure(operation, key)
                if exc is not None:
                    self.commands = []
                    raise exc
        results = [getattr(self.client, op)(*args, **kwargs) for op, args, kwargs in self.commands]
        self.commands = []
        return results


class FixedClock:
    """UTC clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def redis_client():
    return MockRedisClient()


@pytest.fixture
def store(redis_client):
    return RecordStore(redis_client)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
