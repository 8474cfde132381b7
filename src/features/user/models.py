"""User domain models."""

from datetime import UTC, datetime
from enum import StrEnum

from pwdlib import PasswordHash
from sqlalchemy import Boolean, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UTCDateTime


class UserRole(StrEnum):
    """Platform roles carried in the ``role`` claim.

    CUSTOMER: places orders. The only role open to self-registration.
    RESTAURANT_OWNER: manages restaurants and menus.
    DELIVERY_DRIVER: picks up and delivers orders.
    ADMIN: platform operator, may unlock accounts.
    """

    CUSTOMER = "CUSTOMER"
    RESTAURANT_OWNER = "RESTAURANT_OWNER"
    DELIVERY_DRIVER = "DELIVERY_DRIVER"
    ADMIN = "ADMIN"

    @property
    def display_name(self) -> str:
        return _ROLE_DISPLAY_NAMES[self]


_ROLE_DISPLAY_NAMES = {
    UserRole.CUSTOMER: "Customer",
    UserRole.RESTAURANT_OWNER: "Restaurant Owner",
    UserRole.DELIVERY_DRIVER: "Delivery Driver",
    UserRole.ADMIN: "Administrator",
}


pwd_hasher = PasswordHash.recommended()


class User(Base, TimestampMixin):
    """Principal that can authenticate, plus its account-security record."""

    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Authentication
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    password_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Authorization
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=30),
        nullable=False,
        default=UserRole.CUSTOMER,
        server_default=UserRole.CUSTOMER.value,
    )

    # Status
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    email_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Account security
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    account_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    account_locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def role_display_name(self) -> str:
        return UserRole(self.role).display_name

    def verify_password(self, plain_password: str) -> bool:
        """Verify a password against the hash using Argon2.

        Salt is automatically extracted from the hash by pwdlib.
        """
        return pwd_hasher.verify(plain_password, self.hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using Argon2.

        Salt is automatically generated and embedded in the returned hash.
        """
        return pwd_hasher.hash(password)

    def is_locked(self, now: datetime | None = None) -> bool:
        """Locked while the flag is set and the lock has not lapsed; no end time means permanent."""
        if not self.account_locked:
            return False
        if self.account_locked_until is None:
            return True
        return self.account_locked_until > (now or datetime.now(UTC))
