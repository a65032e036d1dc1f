"""Auth service — JWT issuance and session lifecycle.

Identity is owned by an external provider; this service only turns a known
profile into a session-backed bearer token and back.  Sign-in exchanges a
token signed by the provider for such a session.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.auth.models import Profile, UserSession
from timeloo.common.exceptions import AuthenticationRequiredException, NotFoundException
from timeloo.config import settings

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_access_token(user_id: str, *, expired: bool = False) -> str:
    """Encode an access JWT for ``user_id``."""
    delta = timedelta(hours=settings.JWT_EXPIRY_HOURS)
    exp = datetime.now(timezone.utc) + (-timedelta(hours=1) if expired else delta)
    payload = {
        "sub": user_id,
        "type": "access",
        "exp": exp,
        "jti": uuid.uuid4().hex,  # distinct tokens per session
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def create_session(db: AsyncSession, user_id: str) -> str:
    """Issue an access token for an existing profile and persist its session."""
    profile = await db.get(Profile, user_id)
    if profile is None:
        raise NotFoundException("Profile", user_id)

    token = create_access_token(user_id)
    db.add(
        UserSession(
            user_id=user_id,
            token_hash=hash_token(token),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
        )
    )
    await db.flush()
    return token


def _identity_claims(identity_token: str) -> dict:
    """Verify a token signed by the identity provider and return its claims."""
    try:
        claims = jwt.decode(
            identity_token,
            settings.IDENTITY_JWT_SECRET,
            algorithms=[settings.IDENTITY_JWT_ALGORITHM],
            audience=settings.IDENTITY_JWT_AUDIENCE,
        )
    except ExpiredSignatureError:
        raise AuthenticationRequiredException("Identity token has expired.")
    except JWTError:
        raise AuthenticationRequiredException("Invalid identity token.")

    if not claims.get("sub"):
        raise AuthenticationRequiredException("Identity token has no subject.")
    return claims


async def exchange_identity_token(db: AsyncSession, identity_token: str) -> tuple[str, Profile]:
    """Sign in with an identity-provider token.

    The profile is created on first sign-in and its name / email refreshed
    from the token afterwards.  Returns the new access token and the profile.
    """
    claims = _identity_claims(identity_token)
    user_id = str(claims["sub"])
    metadata = claims.get("user_metadata") or {}
    name = metadata.get("full_name") or metadata.get("name") or claims.get("name")
    email = claims.get("email")

    profile = await db.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id, name=name, email=email)
        db.add(profile)
        logger.info("First sign-in of %s", user_id)
    else:
        if name:
            profile.name = name
        if email:
            profile.email = email
    await db.flush()
    await db.refresh(profile)

    token = await create_session(db, user_id)
    return token, profile


async def resolve_token(db: AsyncSession, token: str) -> Profile:
    """Validate JWT + session and return the profile, or raise 401."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise AuthenticationRequiredException("Token has expired.")
    except JWTError:
        raise AuthenticationRequiredException("Invalid token.")

    if payload.get("type") != "access":
        raise AuthenticationRequiredException("Invalid token type.")

    result = await db.execute(
        select(UserSession).where(
            UserSession.token_hash == hash_token(token),
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > datetime.now(timezone.utc),
        ),
    )
    if result.scalars().first() is None:
        raise AuthenticationRequiredException("Session invalid or expired.")

    profile = await db.get(Profile, payload["sub"])
    if profile is None:
        raise AuthenticationRequiredException("User account not found.")
    return profile


async def revoke_session(db: AsyncSession, token: str) -> Optional[UserSession]:
    """Mark the session for ``token`` as revoked."""
    result = await db.execute(
        select(UserSession).where(UserSession.token_hash == hash_token(token)),
    )
    session = result.scalars().first()
    if session:
        session.is_revoked = True
        await db.flush()
    return session
