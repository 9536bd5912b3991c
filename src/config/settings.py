"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Weights are floats; allow for rounding in env-provided values
_WEIGHT_SUM_TOLERANCE = 1e-6


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="learnboard", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment name"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=1, description="Number of workers")
    api_reload: bool = Field(default=True, description="Enable auto-reload")

    # Authentication (tokens are issued by the identity service)
    auth_secret_key: str = Field(
        default="dev-jwt-secret-key-change-in-production-32chars!",
        description="JWT signing key (min 32 chars)",
    )
    auth_algorithm: str = Field(default="HS256", description="JWT algorithm")
    auth_access_token_expire_minutes: int = Field(
        default=15, description="Access token expiration (minutes)"
    )

    # Redis
    redis_enabled: bool = Field(default=True, description="Connect to Redis")
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(default=10, description="Max Redis connections")
    redis_socket_timeout: float = Field(default=5.0, description="Redis socket timeout")
    redis_socket_connect_timeout: float = Field(
        default=5.0, description="Redis connect timeout"
    )
    redis_retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    redis_health_check_interval: int = Field(
        default=30, description="Health check interval"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log format"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Include caller info"
    )
    log_to_file: bool = Field(default=True, description="Write rotating log files")
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Max size per log file (10MB default)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start/finish"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Paths to exclude from request logging",
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="CORS origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")
    cors_max_age: int = Field(default=600, description="CORS max age")

    # Dashboard cache
    dashboard_cache_backend: Literal["memory", "redis"] = Field(
        default="redis",
        description="Snapshot cache backend (falls back to memory without Redis)",
    )
    dashboard_cache_ttl_seconds: int = Field(
        default=300, gt=0, description="Snapshot time to live"
    )
    dashboard_stream_keepalive_seconds: float = Field(
        default=15.0, gt=0, description="Idle interval before an SSE keepalive"
    )

    # Risk classification
    risk_weight_inactivity: float = Field(
        default=0.4, ge=0, le=1, description="Weight of login inactivity"
    )
    risk_weight_completion: float = Field(
        default=0.4, ge=0, le=1, description="Weight of incomplete enrollments"
    )
    risk_weight_satisfaction: float = Field(
        default=0.2, ge=0, le=1, description="Weight of low ratings given"
    )
    risk_inactivity_threshold_days: int = Field(
        default=30, gt=0, description="Days without login at which inactivity saturates"
    )
    risk_medium_threshold: float = Field(
        default=0.33, ge=0, le=1, description="Score from which a user is medium risk"
    )
    risk_high_threshold: float = Field(
        default=0.66, ge=0, le=1, description="Score from which a user is high risk"
    )

    # Reports
    report_ttl_seconds: int = Field(
        default=3600, gt=0, description="Lifetime of a generated report"
    )
    report_max_rows: int = Field(
        default=50_000, gt=0, description="Row cap per generated report"
    )

    @model_validator(mode="after")
    def _check_risk_policy(self) -> "Settings":
        total = (
            self.risk_weight_inactivity
            + self.risk_weight_completion
            + self.risk_weight_satisfaction
        )
        if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
            msg = f"Risk weights must sum to 1 (got {total})"
            raise ValueError(msg)
        if self.risk_medium_threshold > self.risk_high_threshold:
            msg = "risk_medium_threshold must not exceed risk_high_threshold"
            raise ValueError(msg)
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
