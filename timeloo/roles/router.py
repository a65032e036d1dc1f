"""Roles router — current role, admin user listing, role updates."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.auth.dependencies import get_current_user, get_query_cache, require_admin
from timeloo.auth.models import Profile
from timeloo.common.cache import QueryCache
from timeloo.common.constants import UserRole
from timeloo.database import get_db
from timeloo.roles.schemas import (
    CurrentRoleOut,
    RoleUpdateOut,
    RoleUpdateRequest,
    UserWithRoleOut,
)
from timeloo.roles.service import RoleService, is_hardcoded_admin

router = APIRouter(prefix="", tags=["roles"])


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=CurrentRoleOut)
async def get_my_role(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Resolve the caller's role (``user`` when none was assigned)."""
    role = await RoleService.get_current_role(db, user.id, cache)
    return CurrentRoleOut(
        user_id=user.id,
        role=role,
        is_admin=role == UserRole.admin,
        is_hardcoded_admin=is_hardcoded_admin(user.id),
    )


# ── GET /users ──────────────────────────────────────────────────────

@router.get("/users", response_model=list[UserWithRoleOut])
async def list_users(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """All profiles with their roles. Admins only."""
    return await RoleService.list_users_with_roles(db, user.id, cache)


# ── PUT /users/{user_id} ────────────────────────────────────────────

@router.put("/users/{user_id}", response_model=RoleUpdateOut)
async def update_user_role(
    user_id: str,
    body: RoleUpdateRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Assign ``admin`` or ``user`` to a profile."""
    return await RoleService.update_role(db, admin.id, user_id, body.role, cache)
