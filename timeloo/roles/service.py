"""Role service — current-role resolution, admin user listing, role updates.

Reads go through the application ``QueryCache`` under the
``current-user-role`` and ``all-users-with-roles`` keys; the only mutation,
:meth:`RoleService.update_role`, invalidates them through the declared
``update-role`` entry of the invalidation graph.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.auth.models import Profile
from timeloo.common.audit import create_audit_entry
from timeloo.common.cache import QueryCache
from timeloo.common.constants import ALL_USERS_WITH_ROLES, CURRENT_USER_ROLE, UserRole
from timeloo.common.exceptions import (
    AuthenticationRequiredException,
    ForbiddenException,
    NotFoundException,
    QueryFailedException,
)
from timeloo.config import settings
from timeloo.roles.models import UserRoleAssignment
from timeloo.roles.schemas import RoleUpdateOut, UserWithRoleOut

logger = logging.getLogger(__name__)


def is_hardcoded_admin(user_id: Optional[str]) -> bool:
    """True for users configured as permanent admins."""
    return user_id is not None and user_id in settings.admin_user_ids


class RoleService:
    """Async role operations."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_assignment(
        db: AsyncSession,
        user_id: str,
    ) -> Optional[UserRoleAssignment]:
        result = await db.execute(
            select(UserRoleAssignment).where(UserRoleAssignment.user_id == user_id)
        )
        return result.scalars().first()

    @staticmethod
    async def _upsert_assignment(
        db: AsyncSession,
        user_id: str,
        role: UserRole,
        assigned_by: str,
    ) -> tuple[UserRoleAssignment, Optional[UserRole]]:
        """Insert or update the single role row for ``user_id``.

        Returns (row, previous_role).
        """
        now = datetime.now(timezone.utc)
        row = await RoleService._get_assignment(db, user_id)
        previous = row.role if row else None
        if row is None:
            row = UserRoleAssignment(
                user_id=user_id,
                role=role,
                assigned_by=assigned_by,
                assigned_at=now,
            )
            db.add(row)
        else:
            row.role = role
            row.assigned_by = assigned_by
            row.assigned_at = now
        await db.flush()
        return row, previous

    @staticmethod
    async def _load_role(db: AsyncSession, user_id: str) -> UserRole:
        try:
            if is_hardcoded_admin(user_id):
                row = await RoleService._get_assignment(db, user_id)
                if row is None or row.role != UserRole.admin:
                    logger.info("Setting admin role in database for %s", user_id)
                    await RoleService._upsert_assignment(db, user_id, UserRole.admin, user_id)
                return UserRole.admin

            result = await db.execute(
                select(UserRoleAssignment.role).where(
                    UserRoleAssignment.user_id == user_id
                )
            )
            role = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Error fetching role for %s: %s", user_id, exc)
            raise QueryFailedException("Could not determine your role.") from exc

        # No row is the normal state for everyone who was never promoted
        return role or UserRole.user

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_current_role(
        db: AsyncSession,
        user_id: str,
        cache: QueryCache,
    ) -> UserRole:
        """Return the role of ``user_id``; ``user`` when no role row exists."""
        return await cache.fetch(
            (CURRENT_USER_ROLE, user_id),
            lambda: RoleService._load_role(db, user_id),
        )

    @staticmethod
    async def list_users_with_roles(
        db: AsyncSession,
        caller_id: str,
        cache: QueryCache,
    ) -> list[UserWithRoleOut]:
        """List every profile with its role, newest first. Admins only."""
        role = await RoleService.get_current_role(db, caller_id, cache)
        if role != UserRole.admin:
            raise ForbiddenException(detail="Only administrators can list user roles.")

        async def _load() -> list[UserWithRoleOut]:
            try:
                result = await db.execute(
                    select(Profile, UserRoleAssignment)
                    .outerjoin(
                        UserRoleAssignment,
                        UserRoleAssignment.user_id == Profile.id,
                    )
                    .order_by(Profile.created_at.desc(), Profile.id)
                )
                rows = result.all()
            except SQLAlchemyError as exc:
                logger.error("Error fetching users: %s", exc)
                raise QueryFailedException("Could not load users.") from exc

            return [
                UserWithRoleOut(
                    id=profile.id,
                    name=profile.name,
                    email=profile.email,
                    created_at=profile.created_at,
                    role=assignment.role if assignment else UserRole.user,
                    assigned_by=assignment.assigned_by if assignment else None,
                    assigned_at=assignment.assigned_at if assignment else None,
                    is_hardcoded_admin=is_hardcoded_admin(profile.id),
                )
                for profile, assignment in rows
            ]

        return await cache.fetch((ALL_USERS_WITH_ROLES,), _load)

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_role(
        db: AsyncSession,
        caller_id: Optional[str],
        user_id: str,
        new_role: UserRole,
        cache: QueryCache,
    ) -> RoleUpdateOut:
        """Upsert the role of ``user_id`` on behalf of ``caller_id``."""
        if caller_id is None:
            raise AuthenticationRequiredException("Not authenticated.")

        if is_hardcoded_admin(user_id) and new_role == UserRole.user:
            raise ForbiddenException(detail="Cannot change role of hardcoded admin users.")

        profile = await db.get(Profile, user_id)
        if profile is None:
            raise NotFoundException("Profile", user_id)

        row, previous = await RoleService._upsert_assignment(db, user_id, new_role, caller_id)

        await create_audit_entry(
            db,
            action="update_role",
            entity_type="user_role",
            entity_id=user_id,
            actor_id=caller_id,
            old_values={"role": previous.value if previous else None},
            new_values={"role": new_role.value},
        )

        cache.invalidate_after_commit(db, "update-role", user_id=user_id)
        logger.info("Role of %s set to %s by %s", user_id, new_role.value, caller_id)

        return RoleUpdateOut(
            user_id=user_id,
            role=new_role,
            assigned_by=caller_id,
            assigned_at=row.assigned_at,
            message=f"{profile.name or 'User'}'s role has been updated to {new_role.value}",
        )
