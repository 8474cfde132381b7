"""Gateway route table configuration."""

import re

from pydantic import BaseModel, Field, field_validator


class RateLimitConfig(BaseModel):
    """Fixed-window limit applied per client and path.

    Fields left unset take the gateway-wide defaults
    (RATE_LIMIT_DEFAULT_LIMIT, RATE_LIMIT_DEFAULT_WINDOW_SECONDS).
    """

    limit: int | None = Field(None, ge=1)
    window_seconds: int | None = Field(None, ge=1)

    def resolve(self, default_limit: int, default_window_seconds: int) -> tuple[int, int]:
        return (
            self.limit if self.limit is not None else default_limit,
            self.window_seconds if self.window_seconds is not None else default_window_seconds,
        )


class RouteConfig(BaseModel):
    """One upstream service exposed through the gateway.

    A request is routed here when its path equals ``path_prefix`` or starts
    with ``path_prefix + "/"``. ``bypass_paths`` are regular expressions that
    must match the whole path for authentication to be skipped.
    """

    id: str = Field(..., min_length=1)
    path_prefix: str
    upstream_url: str
    strip_prefix: int = Field(0, ge=0)
    require_auth: bool = True
    bypass_paths: list[str] = Field(default_factory=list)
    forward_authorization: bool = False
    rate_limit: RateLimitConfig | None = None

    @field_validator("path_prefix")
    @classmethod
    def validate_path_prefix(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path_prefix must start with '/'")
        return value.rstrip("/") or "/"

    @field_validator("upstream_url")
    @classmethod
    def validate_upstream_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("upstream_url must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("bypass_paths")
    @classmethod
    def validate_bypass_paths(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid bypass pattern {pattern!r}: {exc}") from exc
        return value

    def matches(self, path: str) -> bool:
        """Return True when ``path`` falls under this route's prefix."""
        if self.path_prefix == "/":
            return True
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")


def default_routes() -> list[RouteConfig]:
    """Route table used when GATEWAY_ROUTES is not configured."""
    return [
        RouteConfig(
            id="auth-service",
            path_prefix="/api/v1/auth",
            upstream_url="http://localhost:8081",
            bypass_paths=[r"/api/v1/auth/(login|register|refresh|health)"],
            forward_authorization=True,
            rate_limit=RateLimitConfig(limit=30, window_seconds=60),
        ),
        RouteConfig(
            id="user-service",
            path_prefix="/api/v1/users",
            upstream_url="http://localhost:8082",
            rate_limit=RateLimitConfig(limit=100, window_seconds=60),
        ),
        RouteConfig(
            id="restaurant-service",
            path_prefix="/api/v1/restaurants",
            upstream_url="http://localhost:8083",
            require_auth=False,
            rate_limit=RateLimitConfig(limit=200, window_seconds=60),
        ),
        RouteConfig(
            id="menu-service",
            path_prefix="/api/v1/menus",
            upstream_url="http://localhost:8084",
            require_auth=False,
            rate_limit=RateLimitConfig(limit=200, window_seconds=60),
        ),
        RouteConfig(
            id="order-service",
            path_prefix="/api/v1/orders",
            upstream_url="http://localhost:8085",
            rate_limit=RateLimitConfig(),
        ),
    ]
