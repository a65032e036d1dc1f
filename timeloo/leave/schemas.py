"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
  - *State / *Card      → view models built for rendering
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from timeloo.common.constants import DurationType, LeaveStatus
from timeloo.common.pagination import PaginationMeta
from timeloo.leave.catalog import describe_policy


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeOut(BaseModel):
    """Full leave type representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    label: str
    color: str
    description: Optional[str] = None
    accrual_rule: Optional[str] = None
    requires_approval: bool = True
    annual_allowance: int
    carry_forward_limit: int = 0
    monthly_allowance: Optional[Decimal] = None
    duration_type: DurationType = DurationType.days
    is_active: bool = True
    sort_order: int = 0
    is_unlimited: bool = False

    @model_validator(mode="after")
    def fill_description(self) -> "LeaveTypeOut":
        if not self.description:
            self.description = describe_policy(self.label)
        return self


class LeaveTypeCreate(BaseModel):
    """Admin payload for a new leave type."""

    label: str = Field(..., min_length=2, max_length=100)
    color: str = Field("#3B82F6", max_length=20)
    description: Optional[str] = None
    accrual_rule: Optional[str] = Field(None, max_length=100)
    requires_approval: bool = True
    annual_allowance: int = Field(..., ge=0)
    carry_forward_limit: int = Field(0, ge=0)
    monthly_allowance: Optional[Decimal] = Field(None, ge=0)
    duration_type: DurationType = DurationType.days
    sort_order: Optional[int] = None


class LeaveTypeUpdate(BaseModel):
    """Admin payload for editing a leave type; unset fields are kept."""

    label: Optional[str] = Field(None, min_length=2, max_length=100)
    color: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    accrual_rule: Optional[str] = Field(None, max_length=100)
    requires_approval: Optional[bool] = None
    annual_allowance: Optional[int] = Field(None, ge=0)
    carry_forward_limit: Optional[int] = Field(None, ge=0)
    monthly_allowance: Optional[Decimal] = Field(None, ge=0)
    duration_type: Optional[DurationType] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


class BalanceOut(BaseModel):
    """Yearly balance for one (user, leave type) with derived fields."""

    user_id: str
    leave_type_id: uuid.UUID
    year: int
    allocated: Decimal = Decimal("0")
    used: Decimal = Decimal("0")
    available: Decimal = Decimal("0")
    can_apply: bool = False
    is_unlimited: bool = False


class BalanceUpsertRequest(BaseModel):
    """Admin allocation for a user; rows are unique per (user, type, year)."""

    user_id: str
    leave_type_id: uuid.UUID
    year: Optional[int] = Field(None, description="Target year; defaults to current year")
    allocated: Decimal = Field(..., ge=0)
    used: Decimal = Field(Decimal("0"), ge=0)


class MonthlyBalanceOut(BaseModel):
    """Month-scoped view used by monthly-accrual leave types."""

    leave_type: str
    duration_type: DurationType
    monthly_allowance: Decimal
    used_this_month: Decimal
    remaining_this_month: Decimal
    carried_forward: Decimal = Decimal("0")
    annual_allowance: int


class AdditionalWFHBalanceOut(BaseModel):
    """Additional WFH: no fixed allocation, unlocked once regular WFH runs out."""

    used_this_month: Decimal = Decimal("0")
    can_apply: bool = False
    wfh_remaining: Decimal = Decimal("0")
    combined_used_this_year: Decimal = Decimal("0")


class BalanceState(BaseModel):
    """Result of a balance load: ``balance`` stays None until resolved."""

    balance: Optional[BalanceOut] = None
    loading: bool = False
    error: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Presentation
# ═════════════════════════════════════════════════════════════════════


RenderState = Literal["loading", "error", "hidden", "populated"]
BadgeVariant = Literal["default", "secondary", "destructive", "outline"]


class BalanceCard(BaseModel):
    """What a balance card shows; only ``state`` is set outside ``populated``."""

    state: RenderState
    title: Optional[str] = None
    allowance_label: Optional[str] = None
    allowance: Optional[str] = None
    used: Optional[str] = None
    available: Optional[str] = None
    badge_variant: Optional[BadgeVariant] = None
    carried_forward: Optional[str] = None
    warning: Optional[str] = None
    message: Optional[str] = None


class SelectorOption(BaseModel):
    """One entry of the leave-type selector."""

    id: uuid.UUID
    label: str
    color: str
    balance_label: str
    requires_approval: bool
    disabled: bool
    description: str


class SelectorOut(BaseModel):
    options: list[SelectorOption]
    selected: Optional[uuid.UUID] = None


# ═════════════════════════════════════════════════════════════════════
# Applications
# ═════════════════════════════════════════════════════════════════════


class LeaveApplicationCreate(BaseModel):
    """Payload for applying for leave."""

    leave_type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000)
    is_half_day: bool = False
    hours_requested: Optional[Decimal] = Field(None, gt=0, le=8)

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveApplicationCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        if self.is_half_day and self.start_date != self.end_date:
            raise ValueError("A half-day leave must start and end on the same day.")
        return self


class LeaveApplicationOut(BaseModel):
    """Full leave application response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    reason: Optional[str] = None
    is_half_day: bool = False
    hours_requested: Optional[Decimal] = None
    status: LeaveStatus
    applied_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None


class LeaveReviewRequest(BaseModel):
    """Approver decision on a pending application."""

    status: LeaveStatus

    @field_validator("status")
    @classmethod
    def must_resolve(cls, v: LeaveStatus) -> LeaveStatus:
        if v == LeaveStatus.pending:
            raise ValueError("A review must approve or reject the application.")
        return v


class LeaveApplicationListOut(BaseModel):
    """Paginated list of leave applications."""

    data: list[LeaveApplicationOut]
    meta: PaginationMeta
