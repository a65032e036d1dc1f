"""Auth dependencies — bearer extraction, current user, admin gate."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.auth.models import Profile
from timeloo.auth.service import resolve_token
from timeloo.common.cache import QueryCache
from timeloo.common.constants import UserRole
from timeloo.common.exceptions import AuthenticationRequiredException, ForbiddenException
from timeloo.database import get_db


def _extract_bearer(request: Request) -> Optional[str]:
    """Return the Bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:]


def get_query_cache(request: Request) -> QueryCache:
    """The application's shared query cache."""
    return request.app.state.query_cache


# ── Core dependencies ───────────────────────────────────────────────

async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[Profile]:
    """Return the caller's profile, or None when no session is presented."""
    token = _extract_bearer(request)
    if token is None:
        return None
    return await resolve_token(db, token)


async def get_current_user(
    user: Optional[Profile] = Depends(get_optional_user),
) -> Profile:
    """Return the authenticated profile or raise 401."""
    if user is None:
        raise AuthenticationRequiredException("Missing or invalid Authorization header.")
    return user


async def require_admin(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
) -> Profile:
    """Allow only callers whose current role is admin."""
    from timeloo.roles.service import RoleService

    role = await RoleService.get_current_role(db, user.id, cache)
    if role != UserRole.admin:
        raise ForbiddenException(detail="Only administrators can perform this action.")
    return user
