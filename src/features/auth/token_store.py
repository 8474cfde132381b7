"""Persistence of issued refresh tokens."""

import logging
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RefreshToken

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    """Refresh token repository.

    Revocations are single ``UPDATE ... WHERE revoked = false`` statements, so
    concurrent revokes of one token are idempotent and keep the first
    ``revoked_at``. Reads always repopulate loaded instances so they reflect
    those bulk updates.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, token: RefreshToken) -> RefreshToken:
        self.session.add(token)
        await self.session.flush()
        return token

    async def find_by_value(self, value: str) -> RefreshToken | None:
        stmt = select(RefreshToken).where(RefreshToken.token == value).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_by_user(self, user_id: int) -> list[RefreshToken]:
        """Unrevoked, unexpired tokens of a user, newest first."""
        stmt = (
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked.is_(False),
                RefreshToken.expires_at > datetime.now(UTC),
            )
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def revoke(self, value: str, user_id: int | None = None) -> bool:
        """Revoke one token. Returns False when it is unknown or already revoked.

        When ``user_id`` is given only a token owned by that user is revoked.
        """
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.token == value, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(RefreshToken.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def revoke_all(self, user_id: int) -> int:
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        logger.info(f"Revoked {result.rowcount} refresh token(s) for user {user_id}")
        return result.rowcount

    async def revoke_by_device(self, user_id: int, device_info: str) -> int:
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.device_info == device_info,
                RefreshToken.revoked.is_(False),
            )
            .values(revoked=True, revoked_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def mark_used(self, token_id: int) -> None:
        """Stamp the first use of a token; later uses keep that timestamp."""
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.used_at.is_(None))
            .values(used_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def purge_expired(self, older_than: datetime) -> int:
        """Delete tokens whose expiry is before ``older_than``."""
        stmt = (
            delete(RefreshToken)
            .where(RefreshToken.expires_at < older_than)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def purge_revoked(self, older_than: datetime) -> int:
        """Delete tokens revoked before ``older_than``."""
        stmt = (
            delete(RefreshToken)
            .where(RefreshToken.revoked.is_(True), RefreshToken.revoked_at < older_than)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount
