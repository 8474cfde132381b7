"""Gateway filters: trace tagging, threat screening, authentication, rate limiting."""

import logging
import re
import time
from collections.abc import Iterable

from fastapi import Response, status

from src.shared.errors import TRACE_HEADER, ErrorCategory, error_response, resolve_trace_id
from src.shared.request_utils import client_identity
from src.shared.security.token_codec import (
    TokenCodec,
    TokenExpiredError,
    TokenVerificationError,
    is_access,
)

from .chain import Endpoint, GatewayRequest
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_EMAIL_HEADER = "X-User-Email"
USER_ROLE_HEADER = "X-User-Role"
EMAIL_VERIFIED_HEADER = "X-Email-Verified"
AUTHENTICATED_HEADER = "X-Authenticated"

# Identity headers downstream services trust; only the gateway may set them
IDENTITY_HEADERS = (
    USER_ID_HEADER,
    USER_EMAIL_HEADER,
    USER_ROLE_HEADER,
    EMAIL_VERIFIED_HEADER,
    AUTHENTICATED_HEADER,
)

SUSPICIOUS_PATTERNS = (
    "script",
    "javascript",
    "onload",
    "onerror",
    "eval",
    "alert",
    "document.cookie",
    "window.location",
)
SUSPICIOUS_HEADER_NAME_PARTS = ("script", "inject")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Content-Security-Policy": "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline';",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), location=(), payment=()",
}


def _reject(request: GatewayRequest, status_code: int, message: str, **kwargs) -> Response:
    return error_response(
        status_code,
        message,
        path=request.path,
        trace_id=request.header(TRACE_HEADER),
        **kwargs,
    )


class TraceFilter:
    """Tags the request with a trace id and logs its outcome and latency.

    Never short-circuits. Errors raised further down are logged and re-raised.
    """

    name = "trace"

    async def process(self, request: GatewayRequest, call_next: Endpoint) -> Response:
        trace_id = resolve_trace_id(request.header(TRACE_HEADER))
        started = time.perf_counter()
        logger.info(f"[{trace_id}] {request.method} {request.path} from {request.client_host}")

        try:
            response = await call_next(request.with_headers({TRACE_HEADER: trace_id}))
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error(f"[{trace_id}] {request.method} {request.path} failed after {elapsed_ms:.0f}ms: {exc}")
            raise

        response.headers[TRACE_HEADER] = trace_id
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"[{trace_id}] {request.method} {request.path} -> {response.status_code} in {elapsed_ms:.0f}ms"
        )
        return response


class ThreatScreenFilter:
    """Rejects requests whose headers carry script-injection markers.

    Passing responses get the standard security headers and lose ``Server``.
    The bearer credential is exempt from value screening since base64url
    token text can contain any of the markers by chance.
    """

    name = "threat-screen"

    def __init__(
        self,
        patterns: Iterable[str] = SUSPICIOUS_PATTERNS,
        exempt_headers: Iterable[str] = ("authorization",),
    ):
        self.patterns = tuple(p.lower() for p in patterns)
        self.exempt_headers = {h.lower() for h in exempt_headers}

    def find_threat(self, request: GatewayRequest) -> str | None:
        """Return the name of the offending header, or None when clean."""
        for name, value in request.headers.items():
            lowered_name = name.lower()
            if any(part in lowered_name for part in SUSPICIOUS_HEADER_NAME_PARTS):
                return name
            if lowered_name in self.exempt_headers:
                continue
            lowered_value = value.lower()
            if any(pattern in lowered_value for pattern in self.patterns):
                return name
        return None

    async def process(self, request: GatewayRequest, call_next: Endpoint) -> Response:
        offending = self.find_threat(request)
        if offending is not None:
            identity = client_identity(request.headers, request.client_host)
            logger.warning(f"Suspicious header '{offending}' from {identity} on {request.path}")
            return _reject(
                request,
                status.HTTP_400_BAD_REQUEST,
                "Request contains suspicious content",
                code="suspicious_content",
                category=ErrorCategory.FIX_INPUT,
            )

        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        if "server" in response.headers:
            del response.headers["server"]
        return response


class AuthenticationFilter:
    """Verifies the bearer access token and injects the caller's identity.

    Paths matching a bypass pattern (whole-path regex) and routes that do not
    require auth are forwarded unchanged. Otherwise a missing or invalid token
    ends the request with 401 before any later filter runs.
    """

    name = "authentication"

    def __init__(
        self,
        codec: TokenCodec,
        require_auth: bool = True,
        bypass_paths: Iterable[str] = (),
        forward_authorization: bool = False,
    ):
        self.codec = codec
        self.require_auth = require_auth
        self.bypass_patterns = [re.compile(p) for p in bypass_paths]
        self.forward_authorization = forward_authorization

    def is_bypassed(self, path: str) -> bool:
        return not self.require_auth or any(p.fullmatch(path) for p in self.bypass_patterns)

    def _unauthorized(self, request: GatewayRequest, message: str) -> Response:
        return _reject(
            request,
            status.HTTP_401_UNAUTHORIZED,
            message,
            code="authentication_failed",
            category=ErrorCategory.FIX_INPUT,
            headers={"WWW-Authenticate": "Bearer"},
        )

    async def process(self, request: GatewayRequest, call_next: Endpoint) -> Response:
        if self.is_bypassed(request.path):
            return await call_next(request)

        authorization = request.header("authorization")
        if not authorization:
            return self._unauthorized(request, "Missing authorization header")
        if not authorization.startswith("Bearer "):
            return self._unauthorized(request, "Invalid authorization header")

        token = authorization[len("Bearer ") :].strip()
        try:
            claims = self.codec.verify(token)
        except TokenExpiredError:
            return self._unauthorized(request, "Token has expired")
        except TokenVerificationError as exc:
            logger.debug(f"Rejected token on {request.path}: {exc}")
            return self._unauthorized(request, "Invalid token")

        if not is_access(claims):
            return self._unauthorized(request, "Invalid token type")

        user_id = claims.get("userId") or claims.get("sub")
        identity = {
            USER_ID_HEADER: str(user_id),
            USER_EMAIL_HEADER: str(claims.get("email", "")),
            USER_ROLE_HEADER: str(claims.get("role", "")),
            EMAIL_VERIFIED_HEADER: str(bool(claims.get("emailVerified", False))).lower(),
            AUTHENTICATED_HEADER: "true",
        }

        authenticated = request.without_headers(IDENTITY_HEADERS).with_headers(identity)
        if not self.forward_authorization:
            authenticated = authenticated.without_headers(["authorization"])

        logger.debug(f"Authenticated user {user_id} for {request.path}")
        return await call_next(authenticated)


class RateLimitFilter:
    """Admits at most ``limiter.limit`` requests per client and path per window."""

    name = "rate-limit"

    def __init__(self, limiter: RateLimiter):
        self.limiter = limiter

    async def process(self, request: GatewayRequest, call_next: Endpoint) -> Response:
        identity = client_identity(request.headers, request.client_host)
        if not await self.limiter.allow(f"{identity}:{request.path}"):
            logger.warning(f"Rate limit exceeded for {identity} on {request.path}")
            return _reject(
                request,
                status.HTTP_429_TOO_MANY_REQUESTS,
                "Too many requests. Please slow down and try again later.",
                code="rate_limited",
                category=ErrorCategory.RETRY,
                headers={"Retry-After": str(self.limiter.window_seconds)},
            )
        return await call_next(request)
