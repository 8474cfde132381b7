"""Authentication router (JWT token management endpoints)."""

import logging

from fastapi import APIRouter, Body, Depends, Request, status

from src.config.settings import settings
from src.features.user.models import User, UserRole
from src.shared.limiter import limiter
from src.shared.request_utils import get_client_ip

from .dependencies import get_auth_service, get_current_user, require_role
from .schemas import (
    AccountSecurityResponse,
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    LogoutRequest,
    MessageResponse,
    PasswordChangeRequest,
    RefreshTokenRequest,
    RegisterRequest,
    TokenResponse,
    UserInfo,
)
from .service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def describe_device(user_agent: str | None) -> str:
    """Coarse device label stored with a refresh token."""
    if not user_agent:
        return "Unknown Device"
    agent = user_agent.lower()
    if "mobile" in agent:
        return "Mobile Device"
    if "tablet" in agent or "ipad" in agent:
        return "Tablet"
    return "Desktop"


@router.post("/login", response_model=LoginResponse)
@limiter.limit(settings.login_rate_limit)
async def login(request: Request, data: LoginRequest, service: AuthService = Depends(get_auth_service)):
    """Login and get JWT tokens.

    - **email**: Account email
    - **password**: Account password

    Returns access_token, refresh_token and the user profile.
    """
    tokens = await service.login(
        data.email,
        data.password,
        device_info=describe_device(request.headers.get("user-agent")),
        ip_address=get_client_ip(request),
    )
    await service.session.commit()
    return tokens


@router.post("/register", response_model=UserInfo, status_code=status.HTTP_201_CREATED)
async def register(data: RegisterRequest, service: AuthService = Depends(get_auth_service)):
    """Register a new customer account."""
    user = await service.register(data)
    await service.session.commit()
    return user


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(data: RefreshTokenRequest, service: AuthService = Depends(get_auth_service)):
    """Exchange a refresh token for a new access token.

    The same refresh token is returned; it stays valid until revoked or expired.
    """
    tokens = await service.refresh(data.refresh_token)
    await service.session.commit()
    return tokens


@router.post("/logout", response_model=MessageResponse)
async def logout(
    data: LogoutRequest | None = Body(default=None),
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke the given refresh token of the current user."""
    revoked = await service.logout(data.refresh_token if data else None, user_id=current_user.id)
    await service.session.commit()

    if revoked:
        return {"message": "Successfully logged out"}
    return {"message": "Token already revoked or not found"}


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke every refresh token of the current user."""
    revoked = await service.logout_all(current_user.id)
    await service.session.commit()
    return {"message": "Logged out from all devices", "revoked": revoked}


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Change the current user's password. All sessions are signed out."""
    await service.change_password(current_user.id, data.current_password, data.new_password)
    await service.session.commit()
    return {"message": "Password changed successfully"}


@router.get("/profile", response_model=UserInfo)
async def profile(current_user: User = Depends(get_current_user)):
    return UserInfo.model_validate(current_user)


@router.post("/admin/users/{user_id}/unlock", response_model=AccountSecurityResponse)
async def unlock_account(
    user_id: int,
    admin: User = Depends(require_role(UserRole.ADMIN)),
    service: AuthService = Depends(get_auth_service),
):
    """Clear the lockout of an account (admin only)."""
    state = await service.unlock_account(user_id)
    await service.session.commit()
    logger.info(f"Admin {admin.id} unlocked account {user_id}")
    return AccountSecurityResponse.model_validate(state)


@router.get("/health")
async def health():
    return {"status": "UP", "service": "auth-service"}
