"""Authentication dependencies for FastAPI."""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.dependencies import get_db_session
from src.features.user.models import User, UserRole
from src.shared.security.token_codec import TokenCodec, TokenVerificationError, get_token_codec, is_access

from .exceptions import (
    AccountInactiveException,
    AccountLockedException,
    InsufficientRoleException,
    InvalidTokenException,
    InvalidTokenTypeException,
)
from .service import AuthService

security = HTTPBearer(auto_error=False)


def get_auth_service(session: AsyncSession = Depends(get_db_session)) -> AuthService:
    return AuthService(session, codec=get_token_codec())


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session: AsyncSession = Depends(get_db_session),
    codec: TokenCodec = Depends(get_token_codec),
) -> User:
    """Get the current authenticated user from the bearer access token.

    Raises:
        InvalidTokenException: If the token is missing, invalid or the user is gone
        AccountInactiveException: If the account is deactivated
        AccountLockedException: If the account is locked

    """
    if credentials is None:
        raise InvalidTokenException(detail="Not authenticated")

    try:
        payload = codec.verify(credentials.credentials)
    except TokenVerificationError as err:
        raise InvalidTokenException() from err

    if not is_access(payload):
        raise InvalidTokenTypeException(expected="ACCESS")

    try:
        user_id = int(payload.get("userId") or payload["sub"])
    except (KeyError, TypeError, ValueError) as err:
        raise InvalidTokenException(detail="Invalid token payload") from err

    user = await session.get(User, user_id)
    if user is None:
        raise InvalidTokenException(detail="User not found")

    if not user.active:
        raise AccountInactiveException()

    if user.is_locked():
        raise AccountLockedException(locked_until=user.account_locked_until)

    return user


def require_role(*required_roles: UserRole):
    """Dependency factory to require any of the given roles.

    Usage:
        Depends(require_role(UserRole.ADMIN))
    """

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in required_roles:
            raise InsufficientRoleException([r.value for r in required_roles])
        return current_user

    return role_checker
