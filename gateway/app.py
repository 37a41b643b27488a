#!/usr/bin/env python3
"""
FastAPI Abuse Gateway Service

Server side of the abuse mitigation path providing:
- Fingerprint and biometrics signal ingestion with ban-evasion correlation
- Sign-up block enforcement over IP and country block records
- Health, readiness and Prometheus metrics endpoints
"""

import time
import uuid
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse
from fastapi.exceptions import RequestValidationError
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

from gateway.config import GatewayConfig, configure_logging
from gateway.enforcement import BlockEnforcementEngine, CountryResolver, HeaderCountryResolver
from gateway.errors import StorageError, ValidationError
from gateway.identity import BearerTokenIdentity, IdentityProvider
from gateway.ingestion import SignalIngestionService
from gateway.schemas import (
    FingerprintRequest, BiometricsRequest,
    HealthResponse, ReadinessResponse, HealthStatus
)
from gateway.store import RecordStore

logger = structlog.get_logger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter(
    'gateway_requests_total',
    'Total gateway requests',
    ['method', 'endpoint', 'status']
)
REQUEST_DURATION = Histogram(
    'gateway_request_duration_seconds',
    'Request duration in seconds',
    ['endpoint']
)
ACTIVE_REQUESTS = Gauge(
    'gateway_active_requests',
    'Number of active requests'
)
ERROR_COUNT = Counter(
    'gateway_errors_total',
    'Total errors',
    ['error_type', 'endpoint']
)

SIGNAL_ROUTES = ("/signals/fingerprint", "/signals/biometrics", "/blocks/check")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_app(config: Optional[GatewayConfig] = None,
               store: Optional[RecordStore] = None,
               clock: Callable[[], datetime] = _now,
               identity: Optional[IdentityProvider] = None,
               country_resolver: Optional[CountryResolver] = None) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Service configuration (defaults to GatewayConfig.from_env())
        store: Record store; built from config.redis when omitted
        clock: UTC clock shared by enforcement and ingestion
        identity: Acting-identity provider (defaults to bearer tokens in the store)
        country_resolver: Optional country source; defaults to the configured geo header
    """
    config = config or GatewayConfig.from_env()
    configure_logging(config.logging)

    store = store or RecordStore.from_config(config.redis, config.enforcement.review_queue_key)
    if country_resolver is None and config.enforcement.country_header:
        country_resolver = HeaderCountryResolver(config.enforcement.country_header)

    engine = BlockEnforcementEngine(store, clock=clock, country_resolver=country_resolver)
    ingestion = SignalIngestionService(
        store,
        identity=identity or BearerTokenIdentity(store),
        clock=clock,
        alert_threshold=config.enforcement.bot_score_alert_threshold,
    )
    service_start_time = time.perf_counter()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown."""
        logger.info("Starting abuse gateway", environment=config.environment,
                    country_resolution=bool(country_resolver))
        if not store.health_check():
            logger.warning("Record store unreachable at startup")
        try:
            yield
        finally:
            logger.info("Shutting down abuse gateway")
            try:
                store.close()
            except Exception as e:
                logger.warning("Record store close failed", error=str(e))

    app = FastAPI(
        title=config.api.title,
        description=config.api.description,
        version=config.api.version,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.engine = engine
    app.state.ingestion = ingestion

    # "*" + credentials is invalid, so credentials stay off
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        """Request middleware for logging, timing, and metrics."""
        start_time = time.perf_counter()
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        ACTIVE_REQUESTS.inc()
        method = request.method
        path = request.url.path
        status_code: int = 500
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            ERROR_COUNT.labels(error_type="unhandled", endpoint=path).inc()
            logger.exception("Request failed with exception", request_id=request_id, error=str(e))
            raise
        finally:
            ACTIVE_REQUESTS.dec()
            duration = time.perf_counter() - start_time
            REQUEST_COUNT.labels(method=method, endpoint=path, status=str(status_code)).inc()
            REQUEST_DURATION.labels(endpoint=path).observe(duration)

            logger.info("Request completed", request_id=request_id, method=method, path=path,
                        status_code=status_code, duration_ms=duration * 1000.0)
            if response is not None:
                response.headers["X-Request-ID"] = request_id

    # === Exception Handlers ===

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed request bodies are client errors (400)."""
        ERROR_COUNT.labels(error_type="validation", endpoint=request.url.path).inc()
        logger.warning("Request validation failed", path=request.url.path, errors=exc.errors())
        fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()})
        message = "Invalid payload" + (f": {', '.join(f for f in fields if f)}" if any(fields) else "")
        return JSONResponse(status_code=400, content={"error": message, "kind": "ValidationError"})

    @app.exception_handler(ValidationError)
    async def signal_validation_handler(request: Request, exc: ValidationError):
        ERROR_COUNT.labels(error_type="validation", endpoint=request.url.path).inc()
        logger.warning("Signal validation failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=400, content={"error": str(exc), "kind": "ValidationError"})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        """Store failures surface as 500 without exposing internals."""
        ERROR_COUNT.labels(error_type="storage", endpoint=request.url.path).inc()
        logger.error("Storage failure", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"error": "Internal storage error"})

    # === Signal and Enforcement Endpoints ===

    @app.post("/signals/fingerprint")
    def store_fingerprint(payload: FingerprintRequest, request: Request):
        """Persist a device fingerprint and report ban evasion."""
        return ingestion.ingest_fingerprint(payload, request.headers)

    @app.post("/signals/biometrics")
    def store_biometrics(payload: BiometricsRequest, request: Request):
        """Persist a behavioral biometrics sample."""
        return ingestion.ingest_biometrics(payload, request.headers)

    @app.post("/blocks/check")
    def check_block(request: Request):
        """Evaluate IP and country blocks for the calling client."""
        verdict = engine.check_request(request.headers)
        return verdict.to_response()

    def preflight() -> Response:
        return Response(status_code=200, headers=CORS_HEADERS)

    for route in SIGNAL_ROUTES:
        app.add_api_route(route, preflight, methods=["OPTIONS"], include_in_schema=False)

    # === Health and Monitoring Endpoints ===

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        """Health check endpoint."""
        redis_healthy = store.health_check()
        return HealthResponse(
            status=HealthStatus.HEALTHY if redis_healthy else HealthStatus.UNHEALTHY,
            timestamp=_now(),
            version=config.api.version,
            components={"redis": {"status": "healthy" if redis_healthy else "unhealthy"}},
            uptime_seconds=time.perf_counter() - service_start_time,
        )

    @app.get("/ready", response_model=ReadinessResponse)
    def readiness_check():
        """Readiness check for load balancer."""
        redis_connected = store.health_check()
        return ReadinessResponse(ready=redis_connected, timestamp=_now(), redis_connected=redis_connected)

    if config.monitoring.enable_prometheus:
        @app.get(config.monitoring.metrics_path, include_in_schema=False)
        def metrics():
            """Prometheus metrics endpoint."""
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    def root():
        """Root endpoint with service information."""
        endpoints = {
            "health": "/health",
            "ready": "/ready",
            "fingerprint": "/signals/fingerprint",
            "biometrics": "/signals/biometrics",
            "block_check": "/blocks/check"
        }
        if config.monitoring.enable_prometheus:
            endpoints["metrics"] = config.monitoring.metrics_path
        return {"service": config.api.title, "version": config.api.version, "endpoints": endpoints}

    return app


def main() -> None:
    """Run the gateway with uvicorn."""
    import uvicorn
    config = GatewayConfig.from_env()
    # Multiple workers need an import string; each worker builds its app from the environment
    uvicorn.run("gateway.app:create_app", factory=True, host=config.api.host,
                port=config.api.port, workers=config.api.workers)


if __name__ == "__main__":
    main()
