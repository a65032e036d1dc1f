"""Notifications ORM model — durable copy of every toast sent to a user."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from timeloo.common.constants import NotificationVariant
from timeloo.database import Base


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        sa.Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    recipient_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    variant: Mapped[NotificationVariant] = mapped_column(
        sa.Enum(NotificationVariant, name="notification_variant", create_type=False),
        server_default="default",
    )
    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(sa.String(50))
    entity_id: Mapped[Optional[str]] = mapped_column(sa.String(64))
    is_read: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("FALSE"),
    )
    read_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.text("NOW()"),
    )
