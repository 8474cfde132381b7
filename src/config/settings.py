"""Application settings and configuration."""

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.gateway_routes import RouteConfig, default_routes

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings shared by the auth service and the gateway, loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Foodgate Auth Service"
    gateway_name: str = "Foodgate API Gateway"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str  # development, staging, production

    # Database
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_echo: bool = False

    # API
    api_prefix: str = "/api/v1"

    # Tokens
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    # Tolerated clock skew between the issuing service and verifiers
    jwt_leeway_seconds: int = Field(30, ge=0)
    access_token_expire_minutes: int = Field(15, ge=1)
    refresh_token_expire_days: int = Field(7, ge=1)

    # Account lockout
    max_login_attempts: int = Field(5, ge=1)
    lockout_duration_minutes: int = Field(30, ge=1)

    # Auth service rate limiting (slowapi expression)
    login_rate_limit: str = "30/minute"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 2.0

    # Gateway
    rate_limit_default_limit: int = Field(10, ge=1)
    rate_limit_default_window_seconds: int = Field(60, ge=1)
    gateway_routes: list[RouteConfig] = Field(default_factory=default_routes)
    upstream_timeout_seconds: float = 10.0
    circuit_failure_threshold: int = Field(5, ge=1)
    circuit_recovery_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("log_format", mode="before")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = str(v).lower()
        if fmt not in {"json", "dev"}:
            raise ValueError(f"Log format must be 'json' or 'dev', got {fmt}")
        return fmt

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def blank_secret_is_missing(cls, v: str | None) -> str | None:
        if v is None or not str(v).strip():
            return None
        return str(v).strip()

    @field_validator("gateway_routes")
    @classmethod
    def validate_unique_route_ids(cls, routes: list[RouteConfig]) -> list[RouteConfig]:
        seen: set[str] = set()
        for route in routes:
            if route.id in seen:
                raise ValueError(f"Duplicate gateway route id: {route.id}")
            seen.add(route.id)
        return routes


settings = Settings()  # type: ignore[call-arg]
