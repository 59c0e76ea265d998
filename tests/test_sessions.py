"""
Tests for session issuance, refresh, rotation and revocation.
"""

from datetime import timedelta

import pytest

from conftest import fetch_user, login, register_and_activate
from rentspace import models
from rentspace.core.exceptions import AccountBannedError, InvalidTokenError
from rentspace.core.security import get_password_hash
from rentspace.services.sessions import SessionManager


@pytest.fixture
def user(db):
    user = models.User(
        full_name="Bilal Ahmed",
        email="b@x.com",
        phone="+920000000009",
        password=get_password_hash("StrongPass123!"),
        role="owner",
        status=models.STATUS_ACTIVE,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def manager():
    return SessionManager(secret_key="access-key", refresh_secret_key="refresh-key")


class TestSessionManager:
    """SessionManager against the database directly."""

    def test_issue_records_session(self, db, user, manager):
        pair = manager.issue(db, user, device_info="pytest")
        sessions = manager.active_sessions(db, user.id)
        assert len(sessions) == 1
        assert sessions[0].device_info == "pytest"
        assert sessions[0].token_hash != pair.refresh_token

        claims = manager.decode_access(pair.access_token)
        assert claims["sub"] == str(user.id)
        assert claims["role"] == "owner"

    def test_each_login_is_a_separate_session(self, db, user, manager):
        manager.issue(db, user)
        manager.issue(db, user)
        assert len(manager.active_sessions(db, user.id)) == 2

    def test_refresh_rotates_token(self, db, user, manager):
        pair = manager.issue(db, user)
        refreshed = manager.refresh(db, pair.refresh_token)
        assert refreshed.refresh_token != pair.refresh_token
        assert manager.decode_access(refreshed.access_token)["sub"] == str(user.id)
        assert len(manager.active_sessions(db, user.id)) == 1

        again = manager.refresh(db, refreshed.refresh_token)
        assert again.refresh_token != refreshed.refresh_token

    def test_reuse_of_rotated_token_revokes_family(self, db, user, manager):
        pair = manager.issue(db, user)
        other_device = manager.issue(db, user)
        refreshed = manager.refresh(db, pair.refresh_token)

        with pytest.raises(InvalidTokenError):
            manager.refresh(db, pair.refresh_token)
        with pytest.raises(InvalidTokenError):
            manager.refresh(db, refreshed.refresh_token)

        remaining = manager.active_sessions(db, user.id)
        assert len(remaining) == 1
        manager.refresh(db, other_device.refresh_token)

    def test_without_rotation_token_is_reused(self, db, user):
        manager = SessionManager(secret_key="a", refresh_secret_key="r", rotate_refresh_tokens=False)
        pair = manager.issue(db, user)
        first = manager.refresh(db, pair.refresh_token)
        second = manager.refresh(db, pair.refresh_token)
        assert first.refresh_token == second.refresh_token == pair.refresh_token

    def test_revoke_removes_only_that_session(self, db, user, manager):
        pair = manager.issue(db, user)
        other = manager.issue(db, user)
        assert manager.revoke(db, user.id, pair.refresh_token)
        with pytest.raises(InvalidTokenError):
            manager.refresh(db, pair.refresh_token)
        manager.refresh(db, other.refresh_token)

    def test_revoke_all(self, db, user, manager):
        pairs = [manager.issue(db, user) for _ in range(3)]
        assert manager.revoke_all(db, user.id) == 3
        db.commit()
        for pair in pairs:
            with pytest.raises(InvalidTokenError):
                manager.refresh(db, pair.refresh_token)

    def test_token_signed_with_other_key_rejected(self, db, user, manager):
        pair = SessionManager(secret_key="x", refresh_secret_key="other").issue(db, user)
        with pytest.raises(InvalidTokenError):
            manager.refresh(db, pair.refresh_token)

    def test_access_token_is_not_a_refresh_token(self, db, user):
        manager = SessionManager(secret_key="same", refresh_secret_key="same")
        pair = manager.issue(db, user)
        with pytest.raises(InvalidTokenError):
            manager.refresh(db, pair.access_token)

    def test_expired_refresh_token_rejected(self, db, user):
        manager = SessionManager(secret_key="a", refresh_secret_key="r", refresh_ttl=timedelta(seconds=-1))
        pair = manager.issue(db, user)
        with pytest.raises(InvalidTokenError):
            manager.refresh(db, pair.refresh_token)

    def test_banned_user_cannot_refresh(self, db, user, manager):
        pair = manager.issue(db, user)
        user.status = models.STATUS_BANNED
        db.commit()
        with pytest.raises(AccountBannedError):
            manager.refresh(db, pair.refresh_token)


class TestSessionApi:
    """Refresh and logout over HTTP."""

    def test_refresh_from_cookie(self, client, notifier):
        register_and_activate(client, notifier)
        login(client)
        old_refresh = client.cookies.get("refreshToken")
        response = client.post("/auth/refresh")
        assert response.status_code == 200
        assert response.json()["data"]["expiresIn"] == 7 * 24 * 60 * 60
        assert client.cookies.get("refreshToken") != old_refresh

    def test_refresh_from_body(self, client, notifier):
        register_and_activate(client, notifier)
        login(client)
        token = client.cookies.get("refreshToken")
        client.cookies.clear()
        response = client.post("/auth/refresh", json={"refreshToken": token})
        assert response.status_code == 200
        assert client.cookies.get("accessToken")

    def test_refresh_without_token(self, client):
        response = client.post("/auth/refresh")
        assert response.status_code == 401
        assert response.json()["message"] == "Refresh token is required"

    def test_logout_revokes_and_clears_cookies(self, client, notifier, db):
        user_id = register_and_activate(client, notifier)
        login(client)
        token = client.cookies.get("refreshToken")

        response = client.post("/auth/logout")
        assert response.status_code == 200
        assert client.cookies.get("refreshToken") is None
        assert client.cookies.get("accessToken") is None

        response = client.post("/auth/refresh", json={"refreshToken": token})
        assert response.status_code == 401
        # The session opened by email verification is untouched.
        assert len(fetch_user(db, user_id).sessions) == 1

    def test_logout_with_garbage_token_still_succeeds(self, client):
        response = client.post("/auth/logout", json={"refreshToken": "not-a-token"})
        assert response.status_code == 200

    def test_me_requires_access_token(self, client, notifier):
        register_and_activate(client, notifier)
        assert client.get("/auth/me").status_code == 200
        client.cookies.clear()
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_me_accepts_bearer_header(self, client, notifier):
        register_and_activate(client, notifier)
        token = client.cookies.get("accessToken")
        client.cookies.clear()
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["data"]["email"] == "a@x.com"

    def test_reused_refresh_token_is_rejected_over_http(self, client, notifier):
        register_and_activate(client, notifier)
        login(client)
        stale = client.cookies.get("refreshToken")
        assert client.post("/auth/refresh", json={"refreshToken": stale}).status_code == 200
        fresh = client.cookies.get("refreshToken")

        response = client.post("/auth/refresh", json={"refreshToken": stale})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid refresh token"
        assert client.post("/auth/refresh", json={"refreshToken": fresh}).status_code == 401
