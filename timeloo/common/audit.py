"""Append-only record of privileged changes.

Rows are written for role assignments, leave-type maintenance, balance
allocation and application reviews.  Values are stored as JSON snapshots of
the fields that changed.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from timeloo.database import Base

Snapshot = Optional[dict[str, Any]]


class AuditTrail(Base):
    __tablename__ = "audit_trail"
    __table_args__ = (
        sa.Index("ix_audit_trail_actor_id", "actor_id"),
        sa.Index("ix_audit_trail_entity", "entity_type", "entity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    # None for changes made by the system itself
    actor_id: Mapped[Optional[str]] = mapped_column(sa.String(64))
    action: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    old_values: Mapped[Snapshot] = mapped_column(JSONB)
    new_values: Mapped[Snapshot] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()"),
    )

    def __repr__(self) -> str:
        return f"<AuditTrail {self.entity_type}:{self.entity_id} {self.action}>"


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: Any,
    actor_id: Optional[str] = None,
    old_values: Snapshot = None,
    new_values: Snapshot = None,
) -> AuditTrail:
    """Record one change in the caller's transaction.

    ``entity_id`` is stored as text so composite keys such as
    ``"<user>:<leave type>:<year>"`` fit alongside UUIDs.
    """
    entry = AuditTrail(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        old_values=old_values,
        new_values=new_values,
    )
    session.add(entry)
    await session.flush()
    return entry
