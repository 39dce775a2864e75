"""
Seller Analytics Core
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Aggregation Engine Configuration"""

    model_config = SettingsConfigDict(env_prefix="ENGINE_")

    default_timezone: str = Field(default="UTC", description="Timezone used when a query names none")
    max_rows: int = Field(default=1_000_000, gt=0, description="Row ceiling for a single query scan")
    page_size: int = Field(default=5_000, gt=0, description="Event store page size")
    cancel_check_interval: int = Field(default=1_000, gt=0, description="Events between cancellation checks")
    query_timeout_seconds: float = Field(default=30.0, gt=0, description="Default query deadline")

    # Order counting
    count_non_revenue_orders: bool = Field(
        default=True,
        description="Count Pending/Processing orders toward bucket order counts",
    )
    count_cancelled_orders: bool = Field(
        default=False,
        description="Count Cancelled orders toward bucket order counts",
    )

    # Alerting
    critical_ratio: float = Field(default=0.25, ge=0, description="Stock/threshold ratio for Critical alerts")
    warning_ratio: float = Field(default=1.0, gt=0, description="Stock/threshold ratio for Warning alerts")

    # Segmentation
    vip_revenue_threshold: float = Field(default=1000.0, ge=0, description="Window revenue that makes a customer VIP")


class CacheSettings(BaseSettings):
    """Aggregation Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    enabled: bool = Field(default=True, description="Enable the aggregation cache")
    backend: str = Field(default="memory", description="Cache backend: memory or redis")
    ttl_seconds: int = Field(default=60, gt=0, description="Cached aggregation time-to-live")
    as_of_resolution_seconds: int = Field(
        default=60,
        gt=0,
        description="Reference instants are floored to this resolution to form cache keys",
    )
    namespace: str = Field(default="dashboard", description="Redis key namespace")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate cache backend"""
        allowed = ["memory", "redis"]
        if v.lower() not in allowed:
            raise ValueError(f"Cache backend must be one of: {allowed}")
        return v.lower()


class DatabaseSettings(BaseSettings):
    """Event Store Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="seller_analytics", alias="database", description="Database name")
    user: str = Field(default="analytics", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=100, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class SecuritySettings(BaseSettings):
    """API Security Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Rate limiting
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")

    # Metrics
    enable_metrics: bool = Field(default=True, alias="ENABLE_METRICS", description="Expose Prometheus /metrics")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="seller-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    api_workers: int = Field(default=4, alias="API_WORKERS", description="API workers")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    engine: EngineSettings = Field(default_factory=EngineSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
