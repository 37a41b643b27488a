#!/usr/bin/env python3
"""
Tests for the block enforcement engine.

Covers client IP extraction, IP/country precedence, expiry with lazy
deletion, hours-remaining rounding and the fail-open / fail-closed
split between store timeouts and other store errors.
"""

from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError, TimeoutError

from gateway.enforcement import (
    BlockEnforcementEngine, HeaderCountryResolver, extract_client_ip, hours_remaining
)
from gateway.errors import StorageError
from gateway.moderation import ModerationService
from gateway.schemas import BlockRecord

IP = "203.0.113.5"


@pytest.fixture
def moderation(store, clock):
    return ModerationService(store, clock=clock)


@pytest.fixture
def engine(store, clock):
    return BlockEnforcementEngine(store, clock=clock)


def test_extract_client_ip_prefers_leftmost_forwarded_value():
    headers = {'x-forwarded-for': ' 198.51.100.7 , 10.0.0.1', 'x-real-ip': '10.0.0.2'}
    assert extract_client_ip(headers) == "198.51.100.7"


def test_extract_client_ip_falls_back_to_real_ip_then_unknown():
    assert extract_client_ip({'x-real-ip': '10.0.0.2'}) == "10.0.0.2"
    assert extract_client_ip({'x-forwarded-for': ''}) == "unknown"
    assert extract_client_ip({}) == "unknown"


def test_no_record_allows(engine):
    verdict = engine.check(IP)
    assert verdict.to_response() == {"blocked": False}


def test_permanent_ip_block(engine, moderation):
    moderation.block_ip(IP, "fraud", permanent=True)

    verdict = engine.check(IP)

    assert verdict.blocked
    assert verdict.to_response()["blockType"] == "ip"
    assert verdict.is_permanent is True
    assert verdict.reason == "fraud"
    assert "contact support" in verdict.message


def test_temporary_block_reports_ceiling_hours(engine, moderation):
    moderation.block_ip(IP, "spam", duration_hours=1.5)

    verdict = engine.check(IP)

    assert verdict.blocked
    assert verdict.is_permanent is False
    assert "Please try again in 2 hours." in verdict.message
    assert verdict.expires_at is not None


def test_block_expiring_in_a_minute_reports_one_hour(engine, moderation, clock):
    moderation.block_ip(IP, "spam", duration_hours=1)
    clock.advance(minutes=59)

    verdict = engine.check(IP)

    assert verdict.message.endswith("Please try again in 1 hour.")


@pytest.mark.parametrize("seconds", [1, 59, 3599, 3600, 3601, 86399])
def test_hours_remaining_is_at_least_one_and_rounded_up(clock, seconds):
    hours = hours_remaining(clock.now + timedelta(seconds=seconds), clock.now)
    assert hours >= 1
    assert hours * 3600 >= seconds


def test_open_ended_temporary_block_has_no_hours(engine, moderation):
    moderation.block_ip(IP, "manual review")

    verdict = engine.check(IP)

    assert verdict.blocked
    assert verdict.message == "Account creation is temporarily restricted from your IP address."


def test_country_block_takes_precedence(engine, moderation):
    moderation.block_ip(IP, "abuse", permanent=True, country_code="XX")
    moderation.block_country("XX", duration_hours=3)

    verdict = engine.check(IP)
    response = verdict.to_response()

    assert response["blocked"] is True
    assert response["blockType"] == "country"
    assert response["reason"] == "All signups from XX are temporarily blocked"
    assert "your country (XX)" in verdict.message
    assert "3 hours" in verdict.message


def test_expired_ip_block_is_removed(engine, moderation, store, clock):
    moderation.block_ip(IP, "spam", duration_hours=1)
    clock.advance(hours=2)

    assert engine.check(IP).blocked is False
    assert store.get_block(IP) is None
    assert engine.check(IP).blocked is False


def test_expired_country_block_falls_through_to_ip(engine, moderation, store, clock):
    moderation.block_country("XX", duration_hours=1)
    clock.advance(hours=2)
    moderation.block_ip(IP, "spam", duration_hours=5, country_code="XX")

    verdict = engine.check(IP)

    assert verdict.to_response()["blockType"] == "ip"
    assert store.get_block("COUNTRY_BLOCK_XX") is None


def test_concurrent_expiry_delete_is_harmless(engine, moderation, redis_client, clock):
    moderation.block_ip(IP, "spam", duration_hours=1)
    clock.advance(hours=2)
    redis_client.fail('delete', ConnectionError("connection reset"))

    assert engine.check(IP).blocked is False


def test_ip_lookup_timeout_fails_open(engine, moderation, redis_client):
    moderation.block_ip(IP, "fraud", permanent=True)
    redis_client.fail('hgetall', TimeoutError("timed out"), key=f"blocks:{IP}")

    assert engine.check(IP).to_response() == {"blocked": False}


def test_ip_lookup_error_is_surfaced(engine, redis_client):
    redis_client.fail('hgetall', ConnectionError("refused"), key=f"blocks:{IP}")

    with pytest.raises(StorageError):
        engine.check(IP)


def test_country_lookup_error_fails_open_to_ip_verdict(engine, moderation, redis_client):
    moderation.block_ip(IP, "spam", duration_hours=2, country_code="XX")
    redis_client.fail('hgetall', ConnectionError("refused"), key="blocks:COUNTRY_BLOCK_XX")

    verdict = engine.check(IP)

    assert verdict.to_response()["blockType"] == "ip"


def test_malformed_record_is_storage_error(engine, redis_client):
    redis_client.hashes[f"blocks:{IP}"] = {"is_permanent": "false", "block_expires_at": "not-a-date"}

    with pytest.raises(StorageError):
        engine.check(IP)


def test_header_country_resolver_applies_country_block(store, clock, moderation):
    moderation.block_country("DE", permanent=True)
    engine = BlockEnforcementEngine(store, clock=clock, country_resolver=HeaderCountryResolver())

    verdict = engine.check_request({'x-forwarded-for': IP, 'cf-ipcountry': 'de'})

    assert verdict.to_response()["blockType"] == "country"
    assert verdict.is_permanent is True
    assert "hour" not in verdict.message


def test_failing_country_resolver_fails_open(store, clock):
    class BrokenResolver:
        def resolve(self, ip, headers):
            raise RuntimeError("geo service down")

    engine = BlockEnforcementEngine(store, clock=clock, country_resolver=BrokenResolver())

    assert engine.check(IP).blocked is False


def test_block_record_round_trips_through_redis_fields(clock):
    record = BlockRecord(subject=IP, reason="fraud", is_permanent=False,
                         block_expires_at=clock.now + timedelta(hours=1), country_code="XX",
                         metadata={"source": "trigger"})

    fields = record.to_redis()

    assert fields["is_permanent"] == "false"
    assert fields["associated_user_id"] == "null"
    assert BlockRecord.from_redis(IP, fields) == record


@pytest.mark.parametrize("flag", ["true", "True", "1", " TRUE "])
def test_externally_written_permanent_flag_is_recognized(engine, redis_client, flag):
    redis_client.hashes[f"blocks:{IP}"] = {"is_permanent": flag, "reason": "fraud"}

    verdict = engine.check(IP)

    assert verdict.blocked
    assert verdict.is_permanent is True
    assert "contact support" in verdict.message


def test_lowercase_country_code_on_ip_record_is_normalized(engine, moderation, redis_client):
    moderation.block_country("XX", duration_hours=2)
    redis_client.hashes[f"blocks:{IP}"] = {"is_permanent": "true", "country_code": " xx "}

    verdict = engine.check(IP)

    assert verdict.to_response()["blockType"] == "country"


def test_unusable_country_code_still_evaluates_ip_block(engine, redis_client):
    redis_client.hashes[f"blocks:{IP}"] = {"is_permanent": "true", "country_code": "Germany"}

    verdict = engine.check(IP)

    assert verdict.blocked
    assert verdict.to_response()["blockType"] == "ip"


def test_block_record_normalizes_country_code():
    assert BlockRecord(subject=IP, country_code="de ").country_code == "DE"
    assert BlockRecord(subject=IP, country_code="").country_code is None
