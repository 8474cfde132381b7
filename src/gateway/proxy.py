"""Forwarding of admitted requests to upstream services."""

import logging

import httpx
from fastapi import Response, status
from fastapi.responses import JSONResponse

from src.config.gateway_routes import RouteConfig
from src.shared.errors import TRACE_HEADER, ErrorCategory, error_body, generate_trace_id

from .chain import GatewayRequest
from .circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

# Connection-scoped headers (RFC 9110 section 7.6.1) plus the ones httpx recomputes
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)

# httpx hands back decoded content, so the upstream encoding no longer applies
RESPONSE_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding"}


def fallback_response(route: RouteConfig, request: GatewayRequest) -> JSONResponse:
    """503 returned when the upstream is down or its circuit is open."""
    trace_id = request.header(TRACE_HEADER) or generate_trace_id()
    body = error_body(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        f"The {route.id} is temporarily unavailable. Please try again later.",
        path=request.path,
        trace_id=trace_id,
        code="service_unavailable",
        category=ErrorCategory.RETRY,
        service=route.id,
        suggestion="Please try again in a few minutes or contact support if the problem persists.",
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
        headers={TRACE_HEADER: trace_id},
    )


class Forwarder:
    """Terminal endpoint of a route's chain: relays the request upstream."""

    def __init__(
        self,
        route: RouteConfig,
        client: httpx.AsyncClient,
        breaker: CircuitBreaker,
        timeout: float = 10.0,
    ):
        self.route = route
        self.client = client
        self.breaker = breaker
        self.timeout = timeout

    def upstream_path(self, path: str) -> str:
        """Drop the first ``strip_prefix`` path segments."""
        if not self.route.strip_prefix:
            return path
        segments = [s for s in path.split("/") if s]
        remaining = segments[self.route.strip_prefix :]
        return "/" + "/".join(remaining)

    def upstream_url(self, request: GatewayRequest) -> str:
        url = self.route.upstream_url + self.upstream_path(request.path)
        if request.query:
            url = f"{url}?{request.query}"
        return url

    async def __call__(self, request: GatewayRequest) -> Response:
        headers = [(name, value) for name, value in request.headers.items() if name.lower() not in HOP_BY_HOP_HEADERS]
        url = self.upstream_url(request)

        try:
            upstream = await self.breaker.call(
                self.client.request,
                request.method,
                url,
                headers=headers,
                content=request.body,
                timeout=self.timeout,
            )
        except CircuitOpenError:
            logger.warning(f"Circuit open for {self.route.id}, serving fallback for {request.path}")
            return fallback_response(self.route, request)
        except httpx.TransportError as exc:
            logger.warning(f"Upstream {self.route.id} unreachable for {request.method} {request.path}: {exc!r}")
            return fallback_response(self.route, request)

        response = Response(content=upstream.content, status_code=upstream.status_code)
        for name, value in upstream.headers.multi_items():
            if name.lower() not in RESPONSE_EXCLUDED_HEADERS:
                response.headers.append(name, value)
        return response
