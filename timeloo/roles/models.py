"""Role ORM model: one role row per user."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeloo.common.constants import UserRole
from timeloo.database import Base


class UserRoleAssignment(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        sa.UniqueConstraint("user_id", name="uq_user_roles_user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="app_role", create_type=False),
        nullable=False,
        default=UserRole.user,
    )
    assigned_by: Mapped[Optional[str]] = mapped_column(
        sa.String(64), sa.ForeignKey("profiles.id")
    )
    assigned_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    profile: Mapped["Profile"] = relationship(
        back_populates="role_assignment", foreign_keys=[user_id]
    )
    assigner: Mapped[Optional["Profile"]] = relationship(foreign_keys=[assigned_by])
