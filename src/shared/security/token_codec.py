"""Signing and verification of JWT bearer tokens.

The auth service issues tokens and the gateway verifies them. Both sides build
their key with :func:`derive_key` so a secret configured as base64 or as a raw
string yields identical key bytes on each side.
"""

import base64
import binascii
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from functools import lru_cache
from typing import Any

import jwt
from jwt.exceptions import InvalidSignatureError, InvalidTokenError

from src.config.settings import settings
from src.shared.errors import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["exp", "iat", "sub", "type"]


class TokenType(StrEnum):
    """Value of the ``type`` claim."""

    ACCESS = "ACCESS"
    REFRESH = "REFRESH"


class TokenVerificationError(Exception):
    """Base class for every reason a token is rejected."""


class TokenExpiredError(TokenVerificationError):
    """The token's ``exp`` is not in the future."""


class TokenSignatureError(TokenVerificationError):
    """The signature does not match the configured key."""


class TokenMalformedError(TokenVerificationError):
    """The token cannot be decoded or lacks a required claim."""


def derive_key(secret: str | bytes) -> bytes:
    """Turn the configured secret into HMAC key bytes.

    Strings are decoded as strict base64 first and fall back to their raw
    UTF-8 bytes when they are not valid base64. Bytes are used as given.
    """
    if isinstance(secret, bytes):
        return secret
    try:
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def is_access(claims: Mapping[str, Any]) -> bool:
    return claims.get("type") == TokenType.ACCESS.value


def is_refresh(claims: Mapping[str, Any]) -> bool:
    return claims.get("type") == TokenType.REFRESH.value


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenCodec:
    """HMAC JWT signer and verifier.

    ``clock`` drives both ``iat``/``exp`` on issue and the time checks on
    verify. ``leeway_seconds`` absorbs clock skew between the issuing service
    and a verifier running on another host.
    """

    def __init__(
        self,
        secret: str | bytes | None,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
        leeway_seconds: int = 0,
    ):
        self.algorithm = algorithm
        self.leeway_seconds = leeway_seconds
        self._clock = clock
        self._key = derive_key(secret) if secret else None

    def require_key(self) -> bytes:
        """Return the signing key or raise ConfigurationError when none is configured."""
        if not self._key:
            raise ConfigurationError("JWT secret is not configured (set JWT_SECRET)")
        return self._key

    def issue(self, claims: Mapping[str, Any], ttl: timedelta) -> str:
        """Sign ``claims`` with ``iat`` set to now and ``exp`` to now + ttl."""
        key = self.require_key()
        now = self._clock()
        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + ttl
        return jwt.encode(payload, key, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        """Check signature, expiry and required claims; return the claim set.

        Raises:
            TokenExpiredError: ``exp`` has passed
            TokenSignatureError: signature mismatch
            TokenMalformedError: undecodable token, missing claims, or issued in the future

        """
        key = self.require_key()
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                # Time claims are checked below against the codec's own clock
                options={"require": REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except InvalidSignatureError as err:
            raise TokenSignatureError("Token signature is invalid") from err
        except InvalidTokenError as err:
            raise TokenMalformedError(f"Token is malformed: {err}") from err

        self._check_times(claims)
        return claims

    def _check_times(self, claims: Mapping[str, Any]) -> None:
        exp, iat = claims["exp"], claims["iat"]
        if not all(isinstance(value, int | float) and not isinstance(value, bool) for value in (exp, iat)):
            raise TokenMalformedError("Token is malformed: exp and iat must be numeric dates")

        now = self._clock().timestamp()
        if exp <= now - self.leeway_seconds:
            raise TokenExpiredError("Token has expired")
        if iat > now + self.leeway_seconds:
            raise TokenMalformedError("Token is malformed: issued in the future")
        nbf = claims.get("nbf")
        if isinstance(nbf, int | float) and nbf > now + self.leeway_seconds:
            raise TokenMalformedError("Token is malformed: not yet valid")


@lru_cache
def get_token_codec() -> TokenCodec:
    """Process-wide codec built from settings."""
    if not settings.jwt_secret:
        logger.warning("JWT_SECRET is not set; token operations will fail")
    return TokenCodec(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        leeway_seconds=settings.jwt_leeway_seconds,
    )
