"""Authentication schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.features.user.models import UserRole
from src.shared.validators.password import validate_password_strength


# Request schemas
class LoginRequest(BaseModel):
    """Login with email and password."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RegisterRequest(BaseModel):
    """Self-service registration.

    ``role`` is accepted for compatibility with older clients but ignored:
    every self-registered account is a CUSTOMER.
    """

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128, description="Password must be at least 8 characters")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=20)
    role: str | None = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)

    @field_validator("role", mode="before")
    @classmethod
    def keep_requested_role_for_logging(cls, value):
        # Never rejected: unknown or malformed roles are ignored like valid ones
        return None if value is None else str(value)[:50]


class RefreshTokenRequest(BaseModel):
    """Refresh token request."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    """Logout request; without a token the call is a no-op."""

    refresh_token: str | None = None


class PasswordChangeRequest(BaseModel):
    """Password change request."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128, description="Password must be at least 8 characters")

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


# Response schemas
class UserInfo(BaseModel):
    """Public view of a user."""

    id: int
    email: str
    first_name: str
    last_name: str
    full_name: str
    phone: str | None = None
    role: UserRole
    role_display_name: str
    active: bool
    email_verified: bool
    phone_verified: bool
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    """Access token plus the refresh token that produced or accompanies it."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    refresh_expires_in: int = Field(..., description="Refresh token lifetime in seconds")
    issued_at: datetime


class LoginResponse(TokenResponse):
    """Tokens plus the authenticated user's profile."""

    user: UserInfo


class MessageResponse(BaseModel):
    message: str


class LogoutAllResponse(MessageResponse):
    revoked: int


class AccountSecurityResponse(BaseModel):
    """Lockout record of an account (admin view)."""

    user_id: int
    failed_login_attempts: int
    locked: bool
    locked_until: datetime | None = None
    locked_at: datetime | None = None

    model_config = {"from_attributes": True}
