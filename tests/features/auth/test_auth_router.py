"""HTTP tests for the auth service endpoints."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import status
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import settings
from src.features.auth.models import RefreshToken
from src.features.auth.router import describe_device
from src.features.auth.token_store import RefreshTokenStore
from src.features.user.models import UserRole
from src.main import app

API = f"{settings.api_prefix}/auth"


async def _login(client, email, password="TestPass123!", **headers):
    return await client.post(f"{API}/login", json={"email": email, "password": password}, headers=headers)


class TestLoginEndpoint:
    async def test_success(self, client, make_user):
        user = await make_user(email="http@example.com")

        response = await _login(client, "http@example.com", **{"User-Agent": "Mozilla/5.0 (iPhone; Mobile)"})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["token_type"] == "Bearer"
        assert body["access_token"]
        assert body["refresh_token"]
        assert body["user"]["id"] == user.id
        assert body["user"]["role"] == "CUSTOMER"
        assert "hashed_password" not in body["user"]

    async def test_wrong_password_envelope(self, client, make_user):
        await make_user(email="bad@example.com")

        response = await _login(client, "bad@example.com", "WrongPass123", **{"X-Trace-ID": "abc12345"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        body = response.json()
        assert body["code"] == "invalid_credentials"
        assert body["category"] == "fix_input"
        assert body["message"] == "Invalid email or password"
        assert body["path"] == f"{API}/login"
        assert body["traceId"] == "abc12345"
        assert response.headers["X-Trace-ID"] == "abc12345"

    async def test_lockout_over_http(self, client, make_user):
        await make_user(email="lock@example.com")

        for _ in range(settings.max_login_attempts):
            response = await _login(client, "lock@example.com", "WrongPass123")
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

        response = await _login(client, "lock@example.com")
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["code"] == "account_locked"
        assert response.json()["category"] == "retry"

    async def test_schema_validation(self, client):
        response = await client.post(f"{API}/login", json={"email": "not-an-email", "password": "x"})
        assert response.status_code == 422


class TestRegisterEndpoint:
    async def test_register_forces_customer(self, client):
        response = await client.post(
            f"{API}/register",
            json={
                "email": "fresh@example.com",
                "password": "Fresh12345",
                "first_name": "Joao",
                "last_name": "Lima",
                "role": "ADMIN",
            },
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["role"] == "CUSTOMER"
        assert response.json()["email_verified"] is False

    @pytest.mark.parametrize("role", ["superuser", "admin", "SUPERUSER", 7, {"name": "ADMIN"}])
    async def test_unknown_or_malformed_role_is_ignored(self, client, role):
        response = await client.post(
            f"{API}/register",
            json={
                "email": "roles@example.com",
                "password": "Fresh12345",
                "first_name": "Rui",
                "last_name": "Melo",
                "role": role,
            },
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["role"] == "CUSTOMER"

    async def test_weak_password(self, client):
        response = await client.post(
            f"{API}/register",
            json={"email": "weak@example.com", "password": "alllowercase", "first_name": "A", "last_name": "B"},
        )
        assert response.status_code == 422

    async def test_duplicate(self, client, make_user):
        await make_user(email="dup@example.com")
        response = await client.post(
            f"{API}/register",
            json={"email": "dup@example.com", "password": "Fresh12345", "first_name": "A", "last_name": "B"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "email_taken"


class TestTokenLifecycle:
    async def test_refresh_then_logout_then_refresh_fails(self, client, make_user):
        await make_user(email="cycle@example.com")
        tokens = (await _login(client, "cycle@example.com")).json()
        bearer = {"Authorization": f"Bearer {tokens['access_token']}"}

        refreshed = await client.post(f"{API}/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == status.HTTP_200_OK
        assert refreshed.json()["refresh_token"] == tokens["refresh_token"]

        logout = await client.post(f"{API}/logout", json={"refresh_token": tokens["refresh_token"]}, headers=bearer)
        assert logout.status_code == status.HTTP_200_OK
        assert logout.json()["message"] == "Successfully logged out"

        again = await client.post(f"{API}/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert again.status_code == status.HTTP_401_UNAUTHORIZED
        assert again.json()["code"] == "token_revoked"

    async def test_logout_without_body_is_noop(self, client, make_user, auth_headers):
        user = await make_user()
        response = await client.post(f"{API}/logout", headers=auth_headers(user))
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Token already revoked or not found"

    async def test_logout_requires_authentication(self, client):
        response = await client.post(f"{API}/logout", json={"refresh_token": "anything"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_logout_all(self, client, make_user):
        await make_user(email="all@example.com")
        first = (await _login(client, "all@example.com")).json()
        await _login(client, "all@example.com")

        response = await client.post(
            f"{API}/logout-all", headers={"Authorization": f"Bearer {first['access_token']}"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["revoked"] == 2

    async def test_change_password(self, client, make_user, auth_headers):
        user = await make_user(email="pw@example.com")

        response = await client.post(
            f"{API}/change-password",
            json={"current_password": "TestPass123!", "new_password": "Changed1234"},
            headers=auth_headers(user),
        )
        assert response.status_code == status.HTTP_200_OK

        assert (await _login(client, "pw@example.com")).status_code == status.HTTP_401_UNAUTHORIZED
        assert (await _login(client, "pw@example.com", "Changed1234")).status_code == status.HTTP_200_OK

    async def test_change_password_wrong_current(self, client, make_user, auth_headers):
        user = await make_user()
        response = await client.post(
            f"{API}/change-password",
            json={"current_password": "Nope12345", "new_password": "Changed1234"},
            headers=auth_headers(user),
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "wrong_password"


class TestProfileEndpoint:
    async def test_profile(self, client, make_user, auth_headers):
        user = await make_user(first_name="Lia", last_name="Costa")

        response = await client.get(f"{API}/profile", headers=auth_headers(user))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["full_name"] == "Lia Costa"
        assert response.json()["role_display_name"] == "Customer"

    async def test_refresh_token_is_not_a_bearer(self, client, make_user):
        await make_user(email="bearer@example.com")
        tokens = (await _login(client, "bearer@example.com")).json()

        response = await client.get(f"{API}/profile", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_expired_access_token(self, client, make_user, access_token_for):
        user = await make_user()
        expired = access_token_for(user, ttl=timedelta(minutes=-5))

        response = await client.get(f"{API}/profile", headers={"Authorization": f"Bearer {expired}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_locked_user_is_rejected(self, client, make_user, auth_headers):
        user = await make_user(account_locked=True, account_locked_until=datetime.now(UTC) + timedelta(minutes=5))
        response = await client.get(f"{API}/profile", headers=auth_headers(user))
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestAdminUnlock:
    async def test_admin_unlocks(self, client, make_user, auth_headers):
        admin = await make_user(role=UserRole.ADMIN)
        locked = await make_user(account_locked=True, failed_login_attempts=5)

        response = await client.post(f"{API}/admin/users/{locked.id}/unlock", headers=auth_headers(admin))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["locked"] is False
        assert response.json()["failed_login_attempts"] == 0

    async def test_customer_cannot_unlock(self, client, make_user, auth_headers):
        customer = await make_user()
        response = await client.post(f"{API}/admin/users/{customer.id}/unlock", headers=auth_headers(customer))
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["code"] == "insufficient_role"

    async def test_unknown_user(self, client, make_user, auth_headers):
        admin = await make_user(role=UserRole.ADMIN)
        response = await client.post(f"{API}/admin/users/9999/unlock", headers=auth_headers(admin))
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestLoginRateLimit:
    async def test_login_is_rate_limited_per_client(self, client, make_user):
        limit = int(settings.login_rate_limit.split("/")[0])
        headers = {"X-Forwarded-For": "203.0.113.7"}

        for _ in range(limit):
            response = await _login(client, "nobody@example.com", **headers)
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

        response = await _login(client, "nobody@example.com", **headers)
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["category"] == "retry"
        assert "Retry-After" in response.headers

        other_client = await _login(client, "nobody@example.com", **{"X-Forwarded-For": "198.51.100.1"})
        assert other_client.status_code == status.HTTP_401_UNAUTHORIZED


class TestHealthAndDevice:
    async def test_health(self, client):
        response = await client.get(f"{API}/health")
        assert response.json() == {"status": "UP", "service": "auth-service"}

    def test_describe_device(self):
        assert describe_device(None) == "Unknown Device"
        assert describe_device("Mozilla/5.0 (Linux; Android 14) Mobile Safari") == "Mobile Device"
        assert describe_device("Mozilla/5.0 (iPad; CPU OS 17_0)") == "Tablet"
        assert describe_device("Mozilla/5.0 (X11; Linux x86_64)") == "Desktop"


class TestLoginStorageFailure:
    async def test_token_save_failure_is_500_and_rolls_back(self, db_engine, session, make_user, monkeypatch):
        user = await make_user(email="store@example.com", failed_login_attempts=3)

        async def failing_save(self, token):
            raise SQLAlchemyError("connection lost")

        monkeypatch.setattr(RefreshTokenStore, "save", failing_save)
        # Use the real request session so the rollback on error is exercised
        monkeypatch.setattr(
            "src.database.client._async_session_factory",
            async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False),
        )

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await _login(ac, "store@example.com", **{"X-Trace-ID": "feed1234"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["code"] == "internal_error"
        assert body["category"] == "contact_support"
        assert body["message"] == "An unexpected error occurred"
        assert body["traceId"] == "feed1234"
        assert "access_token" not in body
        assert "refresh_token" not in body
        assert "connection lost" not in response.text

        await session.refresh(user)
        assert user.failed_login_attempts == 3
        assert user.last_login_at is None
        stored = await session.execute(select(RefreshToken).where(RefreshToken.user_id == user.id))
        assert stored.scalars().all() == []
