"""Helpers for identifying the client behind a request."""

from collections.abc import Mapping

from fastapi import Request

UNKNOWN_CLIENT = "unknown"


def client_identity(headers: Mapping[str, str], peer: str | None) -> str:
    """Resolve the client address used for rate limiting and auditing.

    Order: first X-Forwarded-For entry, X-Real-IP, the socket peer, "unknown".
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return peer or UNKNOWN_CLIENT


def get_client_ip(request: Request) -> str:
    """slowapi key function and audit helper for FastAPI requests."""
    return client_identity(request.headers, request.client.host if request.client else None)
