"""Authentication service layer."""

import logging
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.features.user.models import User, UserRole
from src.shared.security.token_codec import (
    TokenCodec,
    TokenExpiredError,
    TokenType,
    TokenVerificationError,
    get_token_codec,
    is_refresh,
)

from .exceptions import (
    AccountInactiveException,
    AccountLockedException,
    EmailAlreadyExistsException,
    InvalidCredentialsException,
    InvalidTokenException,
    InvalidTokenTypeException,
    RefreshTokenExpiredException,
    RefreshTokenNotFoundException,
    RefreshTokenRevokedException,
    UserNotFoundException,
    WrongPasswordException,
)
from .models import RefreshToken
from .schemas import LoginResponse, RegisterRequest, TokenResponse, UserInfo
from .security_store import AccountSecurityState, AccountSecurityStore
from .token_store import RefreshTokenStore

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Login, registration and token lifecycle for one request's session."""

    def __init__(
        self,
        session: AsyncSession,
        codec: TokenCodec | None = None,
        security_store: AccountSecurityStore | None = None,
        token_store: RefreshTokenStore | None = None,
    ):
        self.session = session
        self.codec = codec or get_token_codec()
        self.security = security_store or AccountSecurityStore(session)
        self.tokens = token_store or RefreshTokenStore(session)
        self.access_ttl = timedelta(minutes=settings.access_token_expire_minutes)
        self.refresh_ttl = timedelta(days=settings.refresh_token_expire_days)

    async def _get_user_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == normalize_email(email))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundException()
        return user

    def _access_token(self, user: User) -> str:
        claims = {
            "sub": str(user.id),
            "userId": user.id,
            "email": user.email,
            "role": UserRole(user.role).value,
            "emailVerified": user.email_verified,
            "type": TokenType.ACCESS.value,
        }
        return self.codec.issue(claims, self.access_ttl)

    def _refresh_token(self, user: User) -> str:
        claims = {
            "sub": str(user.id),
            "userId": user.id,
            "type": TokenType.REFRESH.value,
            "jti": uuid4().hex,
        }
        return self.codec.issue(claims, self.refresh_ttl)

    async def login(
        self,
        email: str,
        password: str,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> LoginResponse:
        """Authenticate with email and password and issue a token pair.

        Raises:
            InvalidCredentialsException: unknown email or wrong password
            AccountLockedException: account is locked
            AccountInactiveException: account is deactivated

        """
        user = await self._get_user_by_email(email)
        if user is None:
            logger.warning("Login attempt for unknown email")
            raise InvalidCredentialsException()

        if await self.security.is_locked(user.id):
            logger.warning(f"Login attempt for locked account: {user.id}")
            raise AccountLockedException(locked_until=user.account_locked_until)

        if not user.active:
            logger.warning(f"Login attempt for inactive account: {user.id}")
            raise AccountInactiveException()

        if not user.verify_password(password):
            await self.security.record_failure(user.id)
            # The request session rolls back on error, so the failure is committed here
            await self.session.commit()
            raise InvalidCredentialsException()

        await self.security.record_success(user.id)

        now = datetime.now(UTC)
        access_token = self._access_token(user)
        refresh_token = self._refresh_token(user)
        await self.tokens.save(
            RefreshToken(
                user_id=user.id,
                token=refresh_token,
                expires_at=now + self.refresh_ttl,
                device_info=device_info,
                ip_address=ip_address,
            )
        )

        logger.info(f"User {user.id} logged in from {device_info or 'unknown device'}")
        return LoginResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_in=int(self.refresh_ttl.total_seconds()),
            issued_at=now,
            user=UserInfo.model_validate(user),
        )

    async def register(self, data: RegisterRequest) -> UserInfo:
        """Create a CUSTOMER account; any requested role is ignored."""
        email = normalize_email(data.email)
        if await self._get_user_by_email(email) is not None:
            raise EmailAlreadyExistsException()

        if data.role is not None and data.role != UserRole.CUSTOMER:
            logger.warning(f"Registration requested role {data.role!r}; assigning {UserRole.CUSTOMER}")

        user = User(
            email=email,
            hashed_password=User.hash_password(data.password),
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            phone=data.phone,
            role=UserRole.CUSTOMER,
            active=True,
            email_verified=False,
            phone_verified=False,
            failed_login_attempts=0,
            account_locked=False,
        )
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as err:
            # A concurrent registration won the unique email constraint
            await self.session.rollback()
            logger.info("Registration lost the race for an existing email")
            raise EmailAlreadyExistsException() from err

        logger.info(f"User registered: {user.id}")
        return UserInfo.model_validate(user)

    async def refresh(self, value: str) -> TokenResponse:
        """Issue a new access token for a stored, unrevoked, unexpired refresh token.

        The refresh token itself is returned unchanged; its ``used_at`` is stamped.
        """
        try:
            claims = self.codec.verify(value)
        except TokenExpiredError as err:
            raise RefreshTokenExpiredException() from err
        except TokenVerificationError as err:
            raise InvalidTokenException(detail="Invalid refresh token") from err

        if not is_refresh(claims):
            raise InvalidTokenTypeException(expected=TokenType.REFRESH.value)

        stored = await self.tokens.find_by_value(value)
        if stored is None:
            raise RefreshTokenNotFoundException()
        if stored.revoked:
            raise RefreshTokenRevokedException()

        now = datetime.now(UTC)
        if stored.is_expired(now):
            raise RefreshTokenExpiredException()

        user = await self.session.get(User, stored.user_id)
        if user is None or not user.active:
            raise AccountInactiveException()

        access_token = self._access_token(user)
        await self.tokens.mark_used(stored.id)

        return TokenResponse(
            access_token=access_token,
            refresh_token=value,
            expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_in=max(int((stored.expires_at - now).total_seconds()), 0),
            issued_at=now,
        )

    async def logout(self, value: str | None, user_id: int | None = None) -> bool:
        """Revoke one refresh token; missing or unknown tokens are a no-op."""
        if not value:
            return False
        revoked = await self.tokens.revoke(value, user_id=user_id)
        if revoked:
            logger.info(f"Refresh token revoked for user {user_id}")
        return revoked

    async def logout_all(self, user_id: int) -> int:
        await self._get_user(user_id)
        return await self.tokens.revoke_all(user_id)

    async def change_password(self, user_id: int, current_password: str, new_password: str) -> int:
        """Replace the password and revoke every refresh token of the user.

        Returns:
            Number of refresh tokens revoked

        """
        user = await self._get_user(user_id)
        if not user.verify_password(current_password):
            raise WrongPasswordException()

        user.hashed_password = User.hash_password(new_password)
        user.password_changed_at = datetime.now(UTC)
        await self.session.flush()

        revoked = await self.tokens.revoke_all(user_id)
        logger.info(f"Password changed for user {user_id}")
        return revoked

    async def get_profile(self, user_id: int) -> UserInfo:
        return UserInfo.model_validate(await self._get_user(user_id))

    async def unlock_account(self, user_id: int) -> AccountSecurityState:
        return await self.security.unlock(user_id)
