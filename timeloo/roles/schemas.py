"""Role Pydantic v2 schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from timeloo.common.constants import UserRole


class CurrentRoleOut(BaseModel):
    """The caller's resolved role."""

    user_id: str
    role: UserRole
    is_admin: bool
    is_hardcoded_admin: bool = False


class UserWithRoleOut(BaseModel):
    """Profile joined with its (at most one) role row."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    role: UserRole = UserRole.user
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    is_hardcoded_admin: bool = False


class RoleUpdateRequest(BaseModel):
    """Payload for changing a user's role."""

    role: UserRole


class RoleUpdateOut(BaseModel):
    """Result of a role change, with a toast-ready message."""

    user_id: str
    role: UserRole
    assigned_by: str
    assigned_at: datetime
    message: str
