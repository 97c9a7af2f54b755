from __future__ import annotations

import pytest

from subsync.services.auth.credentials import verify_session_token
from subsync.services.notifications.email import KIND_WELCOME
from subsync.tests.utils.fakes import TEST_JWT_SECRET


async def _signup(client, email: str = "api@example.com", password: str = "longenough1") -> dict:
    response = await client.post("/api/auth/signup", json={"email": email, "password": password, "name": "Api"})
    assert response.status_code == 201, response.text
    return response.json()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_signup_login_and_me_share_identity(client, email_sender) -> None:
    signup = await _signup(client)

    assert signup["success"] is True
    assert signup["user"]["subscriptionTier"] == "free"
    assert signup["user"]["subscriptionStatus"] == "active"
    assert "passwordHash" not in signup["user"]
    assert "password_hash" not in signup["user"]
    assert [item[1] for item in email_sender.of_kind(KIND_WELCOME)] == ["api@example.com"]

    login = await client.post("/api/auth/login", json={"email": "API@example.com", "password": "longenough1"})
    assert login.status_code == 200
    body = login.json()
    identity = verify_session_token(body["token"], secret=TEST_JWT_SECRET)
    assert identity is not None
    assert identity.user_id == signup["user"]["id"]

    me = await client.get("/api/auth/me", headers=_bearer(body["token"]))
    assert me.status_code == 200
    assert me.json()["user"]["id"] == signup["user"]["id"]
    assert me.json()["user"]["lastLogin"] is not None


@pytest.mark.asyncio
async def test_signup_rejects_duplicate_and_malformed_input(client) -> None:
    await _signup(client, email="dupe@example.com")

    duplicate = await client.post("/api/auth/signup", json={"email": "Dupe@Example.com", "password": "longenough1"})
    malformed = await client.post("/api/auth/signup", json={"email": "nope", "password": "longenough1"})
    short = await client.post("/api/auth/signup", json={"email": "short@example.com", "password": "short"})
    missing = await client.post("/api/auth/signup", json={"email": "missing@example.com"})

    assert duplicate.status_code == 409
    assert duplicate.json() == {
        "success": False,
        "error": "An account with this email already exists",
        "code": "CONFLICT",
    }
    assert malformed.status_code == 400
    assert short.status_code == 400
    assert missing.status_code == 400
    assert missing.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_overlong_password_is_a_validation_error_not_a_server_error(client) -> None:
    signup = await client.post("/api/auth/signup", json={"email": "long@example.com", "password": "x" * 80})
    await _signup(client, email="login-long@example.com")
    login = await client.post("/api/auth/login", json={"email": "login-long@example.com", "password": "x" * 80})

    assert signup.status_code == 400
    assert signup.json()["code"] == "VALIDATION_ERROR"
    assert signup.json()["error"] == "Password must be at most 72 bytes"
    assert login.status_code == 401


@pytest.mark.asyncio
async def test_login_failure_body_is_uniform(client) -> None:
    await _signup(client, email="known@example.com")

    wrong = await client.post("/api/auth/login", json={"email": "known@example.com", "password": "bad-password"})
    unknown = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "longenough1"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.content == unknown.content
    assert wrong.json()["error"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_me_distinguishes_missing_from_invalid_token(client) -> None:
    missing = await client.get("/api/auth/me")
    invalid = await client.get("/api/auth/me", headers=_bearer("not.a.token"))

    assert missing.status_code == 401
    assert missing.json()["error"] == "Access token required"
    assert invalid.status_code == 403
    assert invalid.json()["error"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_profile_update_logout_and_delete(client) -> None:
    token = (await _signup(client, email="profile@example.com"))["token"]

    updated = await client.patch("/api/auth/me", json={"name": "Renamed"}, headers=_bearer(token))
    assert updated.status_code == 200
    assert updated.json()["user"]["name"] == "Renamed"
    assert updated.json()["user"]["email"] == "profile@example.com"

    logout = await client.post("/api/auth/logout", headers=_bearer(token))
    assert logout.status_code == 200
    assert logout.json()["success"] is True

    deleted = await client.delete("/api/auth/me", headers=_bearer(token))
    assert deleted.status_code == 200
    gone = await client.get("/api/auth/me", headers=_bearer(token))
    assert gone.status_code == 404
