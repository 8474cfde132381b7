"""Authentication exceptions."""

from datetime import datetime

from fastapi import status

from src.shared.errors import AppException, ErrorCategory


class AuthenticationException(AppException):
    """Base authentication exception (401, never worth retrying as-is)."""

    def __init__(self, detail: str = "Authentication failed", code: str = "authentication_failed"):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            detail,
            code=code,
            category=ErrorCategory.FIX_INPUT,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsException(AuthenticationException):
    """Raised when the email is unknown or the password is wrong."""

    def __init__(self):
        super().__init__(detail="Invalid email or password", code="invalid_credentials")


class InvalidTokenException(AuthenticationException):
    """Raised when JWT token is invalid or expired."""

    def __init__(self, detail: str = "Invalid or expired token", code: str = "invalid_token"):
        super().__init__(detail=detail, code=code)


class InvalidTokenTypeException(InvalidTokenException):
    """Raised when token type is invalid."""

    def __init__(self, expected: str = "ACCESS"):
        super().__init__(detail=f"Invalid token type, expected {expected}")


class RefreshTokenNotFoundException(InvalidTokenException):
    """Raised when the refresh token was never issued by this service."""

    def __init__(self):
        super().__init__(detail="Refresh token not found", code="token_not_found")


class RefreshTokenRevokedException(InvalidTokenException):
    """Raised when the refresh token has been revoked."""

    def __init__(self):
        super().__init__(detail="Refresh token has been revoked", code="token_revoked")


class RefreshTokenExpiredException(InvalidTokenException):
    """Raised when refresh token has expired."""

    def __init__(self):
        super().__init__(detail="Refresh token expired", code="token_expired")


class AccountLockedException(AppException):
    """Raised when the account is locked after repeated failed logins."""

    def __init__(self, locked_until: datetime | None = None):
        self.locked_until = locked_until
        if locked_until is None:
            detail = "Account is locked. Please contact support."
            category = ErrorCategory.CONTACT_SUPPORT
        else:
            detail = f"Account is temporarily locked until {locked_until.isoformat()}"
            category = ErrorCategory.RETRY
        super().__init__(status.HTTP_403_FORBIDDEN, detail, code="account_locked", category=category)


class AccountInactiveException(AppException):
    """Raised when user account is inactive."""

    def __init__(self):
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            "User account is inactive",
            code="account_inactive",
            category=ErrorCategory.CONTACT_SUPPORT,
        )


class EmailAlreadyExistsException(AppException):
    """Raised when registering an email that is already taken."""

    def __init__(self):
        super().__init__(status.HTTP_400_BAD_REQUEST, "Email is already registered", code="email_taken")


class WrongPasswordException(AppException):
    """Raised when the current password given for a change does not match."""

    def __init__(self):
        super().__init__(status.HTTP_400_BAD_REQUEST, "Current password is incorrect", code="wrong_password")


class UserNotFoundException(AppException):
    """Raised when the referenced user does not exist."""

    def __init__(self):
        super().__init__(status.HTTP_404_NOT_FOUND, "User not found", code="user_not_found")


class InsufficientRoleException(AppException):
    """Raised when user lacks required role."""

    def __init__(self, required_roles: list[str]):
        roles_str = ", ".join(required_roles)
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            f"User does not have required role(s): {roles_str}",
            code="insufficient_role",
            category=ErrorCategory.CONTACT_SUPPORT,
        )
