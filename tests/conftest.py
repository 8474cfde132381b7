"""Test configuration and fixtures.

Test setup:
1. Environment comes from .env.test, loaded before any application module is imported
2. Each test gets a fresh in-memory SQLite database (aiosqlite) with the full schema
3. The auth app's session dependency is overridden with the test session
4. Gateway tests use an in-memory Redis double with a controllable clock and
   httpx.MockTransport as the downstream service
"""

import math
from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

# Load test environment variables before settings are instantiated
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=True)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.database.base import Base  # noqa: E402
from src.database.dependencies import get_db_session  # noqa: E402
from src.features.user.models import User, UserRole  # noqa: E402
from src.main import app  # noqa: E402
from src.shared.limiter import limiter  # noqa: E402
from src.shared.security.token_codec import TokenCodec, TokenType, get_token_codec  # noqa: E402

# Database


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Fresh in-memory database per test; StaticPool keeps the single connection alive."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    async_session = AsyncSession(bind=db_engine, expire_on_commit=False)
    try:
        yield async_session
    finally:
        await async_session.close()


# FastAPI Client & Dependency Overrides


@pytest_asyncio.fixture
async def override_get_db_session(session: AsyncSession):
    """Route the app's session dependency to the test session."""

    async def _get_test_session():
        yield session

    app.dependency_overrides[get_db_session] = _get_test_session
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_login_limiter():
    """slowapi keeps counters in memory; start every test from zero."""
    limiter.reset()
    yield


@pytest_asyncio.fixture
async def client(override_get_db_session) -> AsyncGenerator[AsyncClient]:
    """Unauthenticated HTTP client for the auth service."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Tokens


@pytest.fixture
def codec() -> TokenCodec:
    return get_token_codec()


@pytest.fixture
def access_token_for(codec: TokenCodec):
    """Build a signed access token for a user without going through login."""

    def _issue(user: User, ttl: timedelta = timedelta(minutes=15)) -> str:
        claims = {
            "sub": str(user.id),
            "userId": user.id,
            "email": user.email,
            "role": UserRole(user.role).value,
            "emailVerified": user.email_verified,
            "type": TokenType.ACCESS.value,
        }
        return codec.issue(claims, ttl)

    return _issue


@pytest.fixture
def auth_headers(access_token_for):
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token_for(user)}"}

    return _headers


# Test User Factories


@pytest_asyncio.fixture
async def make_user(session: AsyncSession):
    """Factory fixture to create test users with custom fields.

    Usage:
        user = await make_user()                          # customer
        admin = await make_user(role=UserRole.ADMIN)      # admin
        locked = await make_user(account_locked=True)     # permanently locked
    """
    counter = 0

    async def _factory(
        email=None,
        password="TestPass123!",
        first_name="Test",
        last_name="User",
        role=UserRole.CUSTOMER,
        active=True,
        **kwargs,
    ) -> User:
        nonlocal counter
        counter += 1

        if email is None:
            email = f"testuser{counter}@example.com"

        user = User(
            email=email,
            hashed_password=User.hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=role,
            active=active,
            **kwargs,
        )

        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

    yield _factory


# Redis double


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory double for the Redis commands the rate limiter issues."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.values: dict[str, int] = {}
        self.deadlines: dict[str, float] = {}
        self.fail = False
        self.fail_expire = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _purge(self, key: str) -> None:
        deadline = self.deadlines.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.values.pop(key, None)
            self.deadlines.pop(key, None)

    async def incr(self, key: str) -> int:
        self._check()
        self._purge(key)
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        if self.fail_expire:
            raise RedisConnectionError("Connection reset")
        self._purge(key)
        if key not in self.values:
            return False
        self.deadlines[key] = self.clock() + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._check()
        self._purge(key)
        if key not in self.values:
            return -2
        if key not in self.deadlines:
            return -1
        return math.ceil(self.deadlines[key] - self.clock())

    async def get(self, key: str) -> str | None:
        self._check()
        self._purge(key)
        value = self.values.get(key)
        return None if value is None else str(value)

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            removed += self.values.pop(key, None) is not None
            self.deadlines.pop(key, None)
        return removed

    async def aclose(self) -> None:
        pass


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(fake_clock: FakeClock) -> FakeRedis:
    return FakeRedis(fake_clock)
