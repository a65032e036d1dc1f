"""Auth module test suite — JWT sessions, /me, logout, admin gate."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from sqlalchemy import select

from timeloo.auth.models import Profile, UserSession
from timeloo.auth.service import (
    create_access_token,
    create_session,
    resolve_token,
)
from timeloo.common.audit import AuditTrail
from timeloo.common.exceptions import AuthenticationRequiredException, NotFoundException
from timeloo.config import settings
from tests.conftest import TestSessionFactory


# ── JWT ─────────────────────────────────────────────────────────────


async def test_jwt_has_expected_claims(test_user):
    """Access tokens carry sub, type and exp."""
    token = create_access_token(test_user.id)
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    assert payload["sub"] == test_user.id
    assert payload["type"] == "access"
    assert "exp" in payload


async def test_create_session_persists_hash(db, test_user):
    """create_session stores only the token hash."""
    token = await create_session(db, test_user.id)

    result = await db.execute(select(UserSession).where(UserSession.user_id == test_user.id))
    session = result.scalars().one()
    assert session.token_hash == hashlib.sha256(token.encode()).hexdigest()

    profile = await resolve_token(db, token)
    assert profile.id == test_user.id


async def test_create_session_unknown_profile(db):
    with pytest.raises(NotFoundException):
        await create_session(db, "user_nobody")


async def test_resolve_token_without_session(db, test_user):
    """A valid JWT with no session row is rejected."""
    with pytest.raises(AuthenticationRequiredException):
        await resolve_token(db, create_access_token(test_user.id))


async def test_resolve_garbage_token(db):
    with pytest.raises(AuthenticationRequiredException) as exc_info:
        await resolve_token(db, "not-a-jwt")
    assert exc_info.value.detail == "Invalid token."


# ── GET /me ─────────────────────────────────────────────────────────


async def test_get_me_returns_current_user(client, test_user, auth_headers):
    resp = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == test_user.id
    assert data["name"] == "Alice"


async def test_get_me_without_header(client):
    resp = await client.get("/api/v1/auth/me")
    assert resp.status_code == 401
    assert resp.json()["type"].endswith("/authentication-required")


async def test_get_me_expired_token(client, test_user):
    """Expired access token → 401 even with a live session row."""
    expired_token = create_access_token(test_user.id, expired=True)

    async with TestSessionFactory() as session:
        session.add(
            UserSession(
                id=uuid.uuid4(),
                user_id=test_user.id,
                token_hash=hashlib.sha256(expired_token.encode()).hexdigest(),
                expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
                is_revoked=False,
                created_at=datetime.now(timezone.utc),
            )
        )
        await session.commit()

    resp = await client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {expired_token}"},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token has expired."


async def test_get_me_wrong_scheme(client, test_user):
    token = create_access_token(test_user.id)
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Token {token}"})
    assert resp.status_code == 401


# ── Logout ──────────────────────────────────────────────────────────


async def test_logout_revokes_session(client, auth_headers):
    """POST /logout revokes the session; subsequent /me returns 401."""
    resp = await client.post("/api/v1/auth/logout", headers=auth_headers)
    assert resp.status_code == 204

    resp2 = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert resp2.status_code == 401


async def test_concurrent_sessions_allowed(client, db, test_user, auth_headers):
    """Logging out one session leaves the others valid."""
    token = await create_session(db, test_user.id)
    other_headers = {"Authorization": f"Bearer {token}"}

    await client.post("/api/v1/auth/logout", headers=auth_headers)

    resp = await client.get("/api/v1/auth/me", headers=other_headers)
    assert resp.status_code == 200


# ── Health ──────────────────────────────────────────────────────────


async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


# ── POST /session — identity token exchange ────────────────────────


def _identity_token(
    sub: str,
    *,
    email: str | None = None,
    full_name: str | None = None,
    secret: str = "test-identity-secret",
    audience: str = "authenticated",
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    claims = {
        "sub": sub,
        "aud": audience,
        "exp": datetime.now(timezone.utc) + expires_in,
        "email": email or f"{sub}@timeloo.test",
        "user_metadata": {"full_name": full_name} if full_name else {},
    }
    return jwt.encode(claims, secret, algorithm="HS256")


async def test_first_sign_in_creates_profile(client, db):
    resp = await client.post(
        "/api/v1/auth/session",
        json={"identity_token": _identity_token("user_new", full_name="Nina New")},
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == settings.JWT_EXPIRY_HOURS * 3600
    assert data["user"]["id"] == "user_new"
    assert data["user"]["name"] == "Nina New"

    me = await client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {data['access_token']}"},
    )
    assert me.status_code == 200
    assert me.json()["email"] == "user_new@timeloo.test"

    audit = await db.execute(
        select(AuditTrail).where(
            AuditTrail.action == "login", AuditTrail.entity_id == "user_new",
        )
    )
    assert audit.scalars().one().entity_type == "user_session"


async def test_sign_in_updates_existing_profile(client, test_user):
    resp = await client.post(
        "/api/v1/auth/session",
        json={
            "identity_token": _identity_token(
                test_user.id, email="alice@new.test", full_name="Alice Liddell",
            ),
        },
    )
    assert resp.status_code == 201
    assert resp.json()["user"]["name"] == "Alice Liddell"

    async with TestSessionFactory() as session:
        profile = await session.get(Profile, test_user.id)
        assert profile.email == "alice@new.test"


async def test_sign_in_keeps_name_when_provider_has_none(client, test_user):
    resp = await client.post(
        "/api/v1/auth/session",
        json={"identity_token": _identity_token(test_user.id)},
    )
    assert resp.status_code == 201
    assert resp.json()["user"]["name"] == "Alice"


@pytest.mark.parametrize(
    "token_kwargs",
    [
        {"secret": "someone-elses-secret"},
        {"audience": "anon"},
    ],
)
async def test_sign_in_rejects_foreign_token(client, token_kwargs):
    resp = await client.post(
        "/api/v1/auth/session",
        json={"identity_token": _identity_token("user_mallory", **token_kwargs)},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid identity token."

    async with TestSessionFactory() as session:
        assert await session.get(Profile, "user_mallory") is None


async def test_sign_in_expired_identity_token(client):
    resp = await client.post(
        "/api/v1/auth/session",
        json={"identity_token": _identity_token("user_late", expires_in=-timedelta(minutes=5))},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Identity token has expired."


async def test_sign_in_rejects_our_own_access_token(client, test_user):
    """Access tokens are signed with a different key than identity tokens."""
    resp = await client.post(
        "/api/v1/auth/session",
        json={"identity_token": create_access_token(test_user.id)},
    )
    assert resp.status_code == 401
