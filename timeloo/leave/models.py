"""Leave ORM models: LeaveType, LeaveBalance, LeaveApplication."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeloo.common.constants import UNLIMITED_ALLOWANCE, DurationType, LeaveStatus
from timeloo.database import Base


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    label: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    color: Mapped[str] = mapped_column(sa.String(20), server_default="#3B82F6")
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    accrual_rule: Mapped[Optional[str]] = mapped_column(sa.String(100))
    requires_approval: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE")
    )
    annual_allowance: Mapped[int] = mapped_column(
        sa.Integer, server_default=sa.text("0")
    )
    carry_forward_limit: Mapped[int] = mapped_column(
        sa.Integer, server_default=sa.text("0")
    )
    monthly_allowance: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    duration_type: Mapped[DurationType] = mapped_column(
        sa.Enum(DurationType, name="leave_duration_type", create_type=False),
        server_default="days",
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, server_default=sa.text("TRUE"))
    sort_order: Mapped[int] = mapped_column(sa.Integer, server_default=sa.text("0"))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    balances: Mapped[list[LeaveBalance]] = relationship(back_populates="leave_type")
    applications: Mapped[list[LeaveApplication]] = relationship(back_populates="leave_type")

    @property
    def is_unlimited(self) -> bool:
        return self.annual_allowance == UNLIMITED_ALLOWANCE


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "leave_type_id", "year", name="uq_leave_balance"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    allocated: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), server_default=sa.text("0")
    )
    used: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), server_default=sa.text("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(back_populates="balances")


class LeaveApplication(Base):
    __tablename__ = "leave_applied_users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    is_half_day: Mapped[bool] = mapped_column(sa.Boolean, server_default=sa.text("FALSE"))
    hours_requested: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(4, 1))
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status", create_type=False),
        server_default="pending",
    )
    applied_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    approved_by: Mapped[Optional[str]] = mapped_column(
        sa.String(64), sa.ForeignKey("profiles.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(back_populates="applications")
