"""slowapi limiter shared by the auth service routers."""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from src.shared.errors import TRACE_HEADER, ErrorCategory, error_response, resolve_trace_id
from src.shared.request_utils import get_client_ip

limiter = Limiter(key_func=get_client_ip)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return error_response(
        429,
        "Too many requests. Please slow down and try again later.",
        path=request.url.path,
        trace_id=resolve_trace_id(request.headers.get(TRACE_HEADER)),
        code="rate_limited",
        category=ErrorCategory.RETRY,
        headers={"Retry-After": str(exc.limit.limit.get_expiry())},
    )
