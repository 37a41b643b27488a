#!/usr/bin/env python3
"""
Abuse Gateway Configuration

Centralized configuration for the signal ingestion and block enforcement
service. Defaults suit local development; deployments override them
through environment variables via GatewayConfig.from_env().
"""

import os
import logging
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Redis configuration for the record store."""

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")

    # Connection settings (every store call is bounded by these)
    socket_connect_timeout: float = Field(default=2.0, description="Connection timeout seconds")
    socket_timeout: float = Field(default=2.0, description="Socket timeout seconds")
    max_connections: int = Field(default=50, description="Max Redis connections")
    health_check_interval: int = Field(default=30, description="Health check interval")


class APIConfig(BaseModel):
    """API configuration."""

    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=1, description="Number of workers")

    title: str = Field(default="Abuse Gateway", description="API title")
    description: str = Field(
        default="Risk signal ingestion and sign-up block enforcement",
        description="API description"
    )
    version: str = Field(default="1.0.0", description="API version")

    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class MonitoringConfig(BaseModel):
    """Monitoring and observability configuration."""

    enable_prometheus: bool = Field(default=True, description="Enable Prometheus metrics")
    metrics_path: str = Field(default="/metrics", description="Metrics endpoint path")


class EnforcementConfig(BaseModel):
    """Block enforcement and signal handling settings."""

    country_header: Optional[str] = Field(
        default=None,
        description="Request header carrying a resolved ISO country code (e.g. cf-ipcountry); disabled when unset"
    )
    bot_score_alert_threshold: int = Field(default=70, ge=0, le=100, description="Score at which samples are flagged")
    review_queue_key: str = Field(default="review:ban_evasion", description="Sorted set holding ban-evasion matches")


class GatewayConfig(BaseModel):
    """Complete gateway service configuration."""

    redis: RedisConfig = Field(default_factory=RedisConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)

    environment: str = Field(default="production", description="Environment")

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Load configuration from environment variables."""
        config = cls()

        # Redis configuration
        if os.getenv("REDIS_HOST"):
            config.redis.host = os.getenv("REDIS_HOST")
        if os.getenv("REDIS_PORT"):
            config.redis.port = int(os.getenv("REDIS_PORT"))
        if os.getenv("REDIS_PASSWORD"):
            config.redis.password = os.getenv("REDIS_PASSWORD")
        if os.getenv("REDIS_SOCKET_TIMEOUT"):
            config.redis.socket_timeout = float(os.getenv("REDIS_SOCKET_TIMEOUT"))

        # API configuration
        if os.getenv("API_HOST"):
            config.api.host = os.getenv("API_HOST")
        if os.getenv("API_PORT"):
            config.api.port = int(os.getenv("API_PORT"))
        if os.getenv("API_WORKERS"):
            config.api.workers = int(os.getenv("API_WORKERS"))

        # Monitoring configuration
        if os.getenv("ENABLE_PROMETHEUS"):
            config.monitoring.enable_prometheus = os.getenv("ENABLE_PROMETHEUS").lower() in ("true", "1", "yes")
        if os.getenv("METRICS_PATH"):
            config.monitoring.metrics_path = os.getenv("METRICS_PATH")

        # Logging configuration
        if os.getenv("LOG_LEVEL"):
            config.logging.level = os.getenv("LOG_LEVEL")
        if os.getenv("ENVIRONMENT"):
            config.environment = os.getenv("ENVIRONMENT")

        # Enforcement configuration
        if os.getenv("COUNTRY_HEADER"):
            config.enforcement.country_header = os.getenv("COUNTRY_HEADER").lower()
        if os.getenv("BOT_SCORE_ALERT_THRESHOLD"):
            config.enforcement.bot_score_alert_threshold = int(os.getenv("BOT_SCORE_ALERT_THRESHOLD"))

        return config


def configure_logging(config: LoggingConfig) -> None:
    """Route structlog through stdlib logging with the configured level and renderer."""
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)

    renderer = (structlog.processors.JSONRenderer() if config.format == "json"
                else structlog.dev.ConsoleRenderer(colors=False))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
