"""Route table: matches request paths to routes and their prebuilt filter chains."""

import logging
from collections.abc import Sequence

import httpx
import redis.asyncio as redis

from src.config.gateway_routes import RouteConfig
from src.shared.security.token_codec import TokenCodec

from .chain import FilterChain, GatewayFilter
from .circuit_breaker import CircuitBreaker
from .filters import AuthenticationFilter, RateLimitFilter, ThreatScreenFilter, TraceFilter
from .proxy import Forwarder
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def build_chain(
    route: RouteConfig,
    codec: TokenCodec,
    forwarder: Forwarder,
    redis_client: redis.Redis | None = None,
    default_limit: int = 10,
    default_window_seconds: int = 60,
) -> FilterChain:
    """Compose trace -> threat screen -> authentication -> rate limit -> forward.

    The rate limit stage is only present when the route configures a limit;
    unset limit fields fall back to the defaults passed in.
    """
    filters: list[GatewayFilter] = [
        TraceFilter(),
        ThreatScreenFilter(),
        AuthenticationFilter(
            codec,
            require_auth=route.require_auth,
            bypass_paths=route.bypass_paths,
            forward_authorization=route.forward_authorization,
        ),
    ]
    if route.rate_limit is not None and redis_client is not None:
        limit, window_seconds = route.rate_limit.resolve(default_limit, default_window_seconds)
        limiter = RateLimiter(redis_client, limit, window_seconds)
        filters.append(RateLimitFilter(limiter))
    return FilterChain(filters, forwarder)


class RouteTable:
    """Routes plus one chain and one circuit breaker per route, built once."""

    def __init__(
        self,
        routes: Sequence[RouteConfig],
        codec: TokenCodec,
        http_client: httpx.AsyncClient,
        redis_client: redis.Redis | None = None,
        upstream_timeout: float = 10.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        default_limit: int = 10,
        default_window_seconds: int = 60,
    ):
        self.default_limit = default_limit
        self.default_window_seconds = default_window_seconds
        # Longest prefix first so nested prefixes win
        self.routes = sorted(routes, key=lambda r: len(r.path_prefix), reverse=True)
        self.breakers: dict[str, CircuitBreaker] = {}
        self.chains: dict[str, FilterChain] = {}

        for route in self.routes:
            breaker = CircuitBreaker(
                route.id,
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                failure_exceptions=(httpx.TransportError,),
            )
            forwarder = Forwarder(route, http_client, breaker, timeout=upstream_timeout)
            self.breakers[route.id] = breaker
            self.chains[route.id] = build_chain(
                route, codec, forwarder, redis_client, default_limit, default_window_seconds
            )
            logger.info(
                f"Route {route.id}: {route.path_prefix} -> {route.upstream_url} "
                f"[{' -> '.join(self.chains[route.id].names)}]"
            )

    def match(self, path: str) -> RouteConfig | None:
        for route in self.routes:
            if route.matches(path):
                return route
        return None

    def chain_for(self, route: RouteConfig) -> FilterChain:
        return self.chains[route.id]

    def _limit_summary(self, route: RouteConfig) -> dict | None:
        if route.rate_limit is None:
            return None
        limit, window_seconds = route.rate_limit.resolve(self.default_limit, self.default_window_seconds)
        return {"limit": limit, "window_seconds": window_seconds}

    def describe(self) -> list[dict]:
        """Public route summary served by /api/routes; upstream addresses are left out."""
        return [
            {
                "id": route.id,
                "path_prefix": route.path_prefix,
                "require_auth": route.require_auth,
                "bypass_paths": route.bypass_paths,
                "rate_limit": self._limit_summary(route),
                "filters": self.chains[route.id].names,
                "circuit": self.breakers[route.id].snapshot(),
            }
            for route in self.routes
        ]
