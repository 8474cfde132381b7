"""Account lockout bookkeeping on the users table."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.features.user.models import User

from .exceptions import UserNotFoundException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSecurityState:
    """Snapshot of an account's lockout record."""

    user_id: int
    failed_login_attempts: int
    locked: bool
    locked_until: datetime | None
    locked_at: datetime | None

    @property
    def permanent(self) -> bool:
        return self.locked and self.locked_until is None

    @classmethod
    def from_user(cls, user: User) -> "AccountSecurityState":
        return cls(
            user_id=user.id,
            failed_login_attempts=user.failed_login_attempts,
            locked=user.account_locked,
            locked_until=user.account_locked_until,
            locked_at=user.locked_at,
        )


class AccountSecurityStore:
    """Failed-login counter and lock state machine.

    UNLOCKED moves to LOCKED when the consecutive failure count reaches
    ``max_attempts``. Only a successful login or an administrative unlock
    moves it back; a lapsed ``locked_until`` leaves the flag set and is
    evaluated by :meth:`is_locked`.

    Mutations read the row with ``SELECT ... FOR UPDATE`` so concurrent
    attempts against one account serialize on the row lock.
    """

    def __init__(
        self,
        session: AsyncSession,
        max_attempts: int | None = None,
        lockout_duration: timedelta | None = None,
    ):
        self.session = session
        self.max_attempts = max_attempts or settings.max_login_attempts
        self.lockout_duration = lockout_duration or timedelta(minutes=settings.lockout_duration_minutes)

    async def _load(self, user_id: int, for_update: bool = False) -> User:
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        user = (await self.session.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise UserNotFoundException()
        return user

    async def get_state(self, user_id: int) -> AccountSecurityState:
        return AccountSecurityState.from_user(await self._load(user_id))

    async def is_locked(self, user_id: int) -> bool:
        user = await self._load(user_id)
        return user.is_locked()

    async def record_failure(self, user_id: int) -> AccountSecurityState:
        """Count a failed login and lock the account once the threshold is reached."""
        user = await self._load(user_id, for_update=True)
        now = datetime.now(UTC)

        user.failed_login_attempts += 1
        if user.failed_login_attempts >= self.max_attempts:
            user.account_locked = True
            user.account_locked_until = now + self.lockout_duration
            user.locked_at = now
            logger.warning(
                f"Account {user_id} locked after {user.failed_login_attempts} failed attempts "
                f"until {user.account_locked_until.isoformat()}"
            )
        else:
            logger.info(f"Failed login for account {user_id} ({user.failed_login_attempts}/{self.max_attempts})")

        await self.session.flush()
        return AccountSecurityState.from_user(user)

    async def record_success(self, user_id: int) -> AccountSecurityState:
        """Reset the counter, clear any lock and stamp the login time."""
        user = await self._load(user_id, for_update=True)
        self._clear(user)
        user.last_login_at = datetime.now(UTC)
        await self.session.flush()
        return AccountSecurityState.from_user(user)

    async def unlock(self, user_id: int) -> AccountSecurityState:
        """Administrative unlock; does not count as a login."""
        user = await self._load(user_id, for_update=True)
        self._clear(user)
        await self.session.flush()
        logger.info(f"Account {user_id} unlocked")
        return AccountSecurityState.from_user(user)

    @staticmethod
    def _clear(user: User) -> None:
        user.failed_login_attempts = 0
        user.account_locked = False
        user.account_locked_until = None
        user.locked_at = None
