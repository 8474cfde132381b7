"""Error taxonomy base classes and the JSON error envelope shared by both apps."""

import logging
import re
from datetime import UTC, datetime
from enum import StrEnum
from http import HTTPStatus
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Trace-ID"
_TRACE_ID_PATTERN = re.compile(r"[A-Za-z0-9\-]{1,64}")


class ErrorCategory(StrEnum):
    """What the caller should do about an error."""

    RETRY = "retry"
    FIX_INPUT = "fix_input"
    CONTACT_SUPPORT = "contact_support"


class ConfigurationError(RuntimeError):
    """Raised when the process is started without required configuration."""


class AppException(HTTPException):
    """HTTP error carrying a machine-readable code and a category."""

    code: str = "error"
    category: ErrorCategory = ErrorCategory.FIX_INPUT

    def __init__(
        self,
        status_code: int,
        detail: str,
        *,
        code: str | None = None,
        category: ErrorCategory | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        if code is not None:
            self.code = code
        if category is not None:
            self.category = category


def generate_trace_id() -> str:
    """Short random id used to correlate log lines of one request."""
    return uuid4().hex[:8]


def resolve_trace_id(value: str | None) -> str:
    """Return a client-supplied trace id when it is well formed, otherwise a fresh one."""
    if value and _TRACE_ID_PATTERN.fullmatch(value):
        return value
    return generate_trace_id()


def category_for_status(status_code: int) -> ErrorCategory:
    if status_code in (status.HTTP_429_TOO_MANY_REQUESTS, status.HTTP_503_SERVICE_UNAVAILABLE):
        return ErrorCategory.RETRY
    if status_code == status.HTTP_403_FORBIDDEN or status_code >= 500:
        return ErrorCategory.CONTACT_SUPPORT
    return ErrorCategory.FIX_INPUT


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def error_body(
    status_code: int,
    message: str,
    *,
    path: str,
    trace_id: str,
    code: str | None = None,
    category: ErrorCategory | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the error envelope returned by both the auth service and the gateway."""
    reason = _reason(status_code)
    body: dict[str, Any] = {
        "status": status_code,
        "error": reason,
        "code": code or reason.lower().replace(" ", "_").replace("-", "_"),
        "message": message,
        "category": str(category or category_for_status(status_code)),
        "path": path,
        "traceId": trace_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    body.update(extra)
    return body


def error_response(
    status_code: int,
    message: str,
    *,
    path: str,
    trace_id: str | None = None,
    code: str | None = None,
    category: ErrorCategory | None = None,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    """Render an error envelope as a JSON response, echoing the trace id."""
    trace_id = trace_id or generate_trace_id()
    response_headers = dict(headers or {})
    response_headers[TRACE_HEADER] = trace_id
    return JSONResponse(
        status_code=status_code,
        content=error_body(
            status_code, message, path=path, trace_id=trace_id, code=code, category=category, **extra
        ),
        headers=response_headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render any HTTPException (domain errors included) as the error envelope."""
    code = getattr(exc, "code", None)
    category = getattr(exc, "category", None)
    return error_response(
        exc.status_code,
        str(exc.detail),
        path=request.url.path,
        trace_id=resolve_trace_id(request.headers.get(TRACE_HEADER)),
        code=code,
        category=category,
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the failure and return a generic 500 envelope without internal details."""
    trace_id = resolve_trace_id(request.headers.get(TRACE_HEADER))
    logger.exception(f"[{trace_id}] Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        path=request.url.path,
        trace_id=trace_id,
        code="internal_error",
        category=ErrorCategory.CONTACT_SUPPORT,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
