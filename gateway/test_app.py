#!/usr/bin/env python3
"""
Endpoint tests for the gateway service (FastAPI TestClient, in-memory Redis).
"""

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError

from gateway.app import create_app
from gateway.config import GatewayConfig
from gateway.moderation import ModerationService


@pytest.fixture
def config():
    config = GatewayConfig()
    config.logging.format = "text"
    return config


@pytest.fixture
def client(config, store, clock):
    return TestClient(create_app(config=config, store=store, clock=clock))


def test_check_allows_unblocked_ip(client):
    response = client.post("/blocks/check", headers={"x-forwarded-for": "203.0.113.5"})

    assert response.status_code == 200
    assert response.json() == {"blocked": False}
    assert "X-Request-ID" in response.headers


def test_check_blocked_ip_is_still_200(client, store, clock):
    ModerationService(store, clock=clock).block_ip("203.0.113.5", "fraud", permanent=True)

    response = client.post("/blocks/check", headers={"x-forwarded-for": "203.0.113.5, 10.0.0.1"})

    assert response.status_code == 200
    body = response.json()
    assert body["blocked"] is True
    assert body["blockType"] == "ip"
    assert body["is_permanent"] is True


def test_check_storage_failure_is_500(client, redis_client):
    redis_client.fail('hgetall', ConnectionError("refused"))

    response = client.post("/blocks/check", headers={"x-real-ip": "203.0.113.5"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal storage error"}


def test_country_header_enables_country_blocks(config, store, clock):
    config.enforcement.country_header = "cf-ipcountry"
    ModerationService(store, clock=clock).block_country("XX", duration_hours=2)
    client = TestClient(create_app(config=config, store=store, clock=clock))

    response = client.post("/blocks/check", headers={"x-forwarded-for": "198.51.100.1", "cf-ipcountry": "XX"})

    assert response.json()["blockType"] == "country"
    assert "2 hours" in response.json()["message"]


def test_fingerprint_endpoint(client):
    response = client.post("/signals/fingerprint", json={"fingerprintHash": "abc123", "sessionId": "s-1"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "banEvasionDetected": False}


def test_fingerprint_ban_evasion_still_succeeds(client, store, redis_client):
    store.ban_device("abc123")

    response = client.post("/signals/fingerprint", json={"fingerprintHash": "abc123", "sessionId": "s-1"})

    assert response.status_code == 200
    assert response.json()["banEvasionDetected"] is True
    assert len(redis_client.zsets["signals:fingerprint:abc123"]) == 1


def test_fingerprint_without_hash_is_400(client):
    response = client.post("/signals/fingerprint", json={"sessionId": "s-1"})

    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"
    assert "fingerprintHash" in response.json()["error"]


def test_fingerprint_hash_mismatch_is_400(client):
    response = client.post("/signals/fingerprint",
                           json={"fingerprintHash": "abc123", "signals": {"platform": "Linux"}})

    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"


def test_biometrics_requires_session(client):
    response = client.post("/signals/biometrics", json={"totalMouseEvents": 10})

    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"


def test_biometrics_endpoint(client):
    response = client.post("/signals/biometrics",
                           json={"sessionId": "s-1", "totalMouseEvents": 12, "botLikelihoodScore": 90})

    assert response.status_code == 200
    assert response.json() == {"success": True, "botLikelihoodScore": 90}


def test_biometrics_storage_failure_is_500(client, redis_client):
    redis_client.fail('zadd', ConnectionError("refused"))

    response = client.post("/signals/biometrics", json={"sessionId": "s-1"})

    assert response.status_code == 500
    assert "error" in response.json()


@pytest.mark.parametrize("path", ["/signals/fingerprint", "/signals/biometrics", "/blocks/check"])
def test_options_returns_empty_success_with_cors(client, path):
    response = client.options(path)

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"


def test_health_ready_and_metrics(client, redis_client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/ready").json()["ready"] is True

    client.post("/blocks/check")
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "gateway_block_verdicts_total" in metrics.text

    redis_client.fail('ping', ConnectionError("refused"))
    assert client.get("/health").json()["status"] == "unhealthy"
    assert client.get("/ready").json()["ready"] is False


def test_root_lists_endpoints(client):
    assert client.get("/").json()["endpoints"]["block_check"] == "/blocks/check"


def test_metrics_endpoint_follows_monitoring_config(config, store, clock):
    config.monitoring.metrics_path = "/internal/metrics"
    client = TestClient(create_app(config=config, store=store, clock=clock))

    assert client.get("/internal/metrics").status_code == 200
    assert client.get("/metrics").status_code == 404
    assert client.get("/").json()["endpoints"]["metrics"] == "/internal/metrics"


def test_metrics_endpoint_can_be_disabled(config, store, clock):
    config.monitoring.enable_prometheus = False
    client = TestClient(create_app(config=config, store=store, clock=clock))

    assert client.get("/metrics").status_code == 404
    assert "metrics" not in client.get("/").json()["endpoints"]


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("REDIS_HOST", "redis.internal")
    monkeypatch.setenv("REDIS_PORT", "6380")
    monkeypatch.setenv("COUNTRY_HEADER", "CF-IPCountry")
    monkeypatch.setenv("BOT_SCORE_ALERT_THRESHOLD", "80")
    monkeypatch.setenv("API_WORKERS", "4")
    monkeypatch.setenv("ENABLE_PROMETHEUS", "false")

    config = GatewayConfig.from_env()

    assert config.redis.host == "redis.internal"
    assert config.redis.port == 6380
    assert config.enforcement.country_header == "cf-ipcountry"
    assert config.enforcement.bot_score_alert_threshold == 80
    assert config.api.workers == 4
    assert config.monitoring.enable_prometheus is False
