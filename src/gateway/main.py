"""API gateway application."""

import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
from fastapi import FastAPI, Request, Response, status

from src.config.logging_config import setup_logging
from src.config.settings import Settings, settings
from src.shared.errors import TRACE_HEADER, error_response, register_exception_handlers, resolve_trace_id
from src.shared.security.token_codec import TokenCodec

from .chain import GatewayRequest
from .filters import IDENTITY_HEADERS
from .rate_limiter import create_redis_client
from .routes import RouteTable

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_app(
    app_settings: Settings | None = None,
    redis_client: redis.Redis | None = None,
    http_client: httpx.AsyncClient | None = None,
    codec: TokenCodec | None = None,
) -> FastAPI:
    """Build the gateway.

    Clients that are not passed in are created from settings and closed on
    shutdown; injected ones belong to the caller.
    """
    cfg = app_settings or settings
    owns_redis = redis_client is None
    owns_http = http_client is None

    redis_client = redis_client or create_redis_client(cfg.redis_url, cfg.redis_socket_timeout)
    http_client = http_client or httpx.AsyncClient(timeout=cfg.upstream_timeout_seconds)
    codec = codec or TokenCodec(cfg.jwt_secret, algorithm=cfg.jwt_algorithm, leeway_seconds=cfg.jwt_leeway_seconds)

    route_table = RouteTable(
        cfg.gateway_routes,
        codec,
        http_client,
        redis_client=redis_client,
        upstream_timeout=cfg.upstream_timeout_seconds,
        failure_threshold=cfg.circuit_failure_threshold,
        recovery_timeout=cfg.circuit_recovery_seconds,
        default_limit=cfg.rate_limit_default_limit,
        default_window_seconds=cfg.rate_limit_default_window_seconds,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        # Startup
        setup_logging(cfg.log_level, cfg.log_format)
        codec.require_key()
        logger.info(f"{cfg.gateway_name} started with {len(route_table.routes)} route(s)")
        yield
        # Shutdown
        if owns_http:
            await http_client.aclose()
        if owns_redis:
            await redis_client.aclose()

    app = FastAPI(title=cfg.gateway_name, version=cfg.app_version, lifespan=lifespan)
    app.state.route_table = route_table
    app.state.redis = redis_client
    app.state.http_client = http_client

    register_exception_handlers(app)

    @app.get("/api/health")
    async def health():
        return {"status": "UP", "service": "api-gateway", "version": cfg.app_version}

    @app.get("/api/routes")
    async def routes():
        return {"routes": route_table.describe()}

    @app.api_route("/{full_path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def proxy(request: Request, full_path: str) -> Response:
        route = route_table.match(request.url.path)
        if route is None:
            return error_response(
                status.HTTP_404_NOT_FOUND,
                f"No route for {request.url.path}",
                path=request.url.path,
                trace_id=resolve_trace_id(request.headers.get(TRACE_HEADER)),
                code="route_not_found",
            )

        gateway_request = await GatewayRequest.from_request(request)
        # Identity headers are only ever set by the authentication filter
        gateway_request = gateway_request.without_headers(IDENTITY_HEADERS)
        return await route_table.chain_for(route)(gateway_request)

    return app


app = create_app()
