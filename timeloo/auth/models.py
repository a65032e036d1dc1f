"""Auth ORM models: Profile, UserSession."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeloo.database import Base


class Profile(Base):
    """A signed-in person, keyed by the identity provider's user id."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(sa.String(200))
    email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    sessions: Mapped[list[UserSession]] = relationship(back_populates="profile")
    role_assignment: Mapped[Optional["UserRoleAssignment"]] = relationship(
        back_populates="profile",
        foreign_keys="UserRoleAssignment.user_id",
        uselist=False,
    )


class UserSession(Base):
    __tablename__ = "user_sessions"

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
    token_hash: Mapped[str] = mapped_column(sa.String(512), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    is_revoked: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("FALSE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    profile: Mapped[Profile] = relationship(back_populates="sessions")
