"""Leave-type catalog: default policy set and human-readable descriptions."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from timeloo.common.constants import (
    ADDITIONAL_WORK_FROM_HOME,
    COMBINED_WFH_ANNUAL_CAP,
    PAID_LEAVE,
    SHORT_LEAVE,
    UNLIMITED_ALLOWANCE,
    WORK_FROM_HOME,
    DurationType,
)

DEFAULT_POLICY_DESCRIPTION = "Standard leave policy applies"

POLICY_DESCRIPTIONS: dict[str, str] = {
    PAID_LEAVE: "1.5 days/month, carried forward monthly, up to 6 days annually",
    "Bereavement Leave": "5 days/year for 1st-degree relatives, no carry forward",
    "Restricted Holiday": "2 days/year for festive leaves, no carry forward",
    SHORT_LEAVE: "4 hours/month for late-ins/early outs, no carry forward",
    WORK_FROM_HOME: "2 days/month, carries forward monthly",
    ADDITIONAL_WORK_FROM_HOME: "WFH + AWFH ≤ 24 days/year, no carry forward",
    "Comp-offs": "For client meetings beyond work hours, unlimited",
    "Special Leave": "Sabbaticals only, requires special approval",
}


def describe_policy(label: str) -> str:
    """Return the policy blurb shown next to a leave type."""
    return POLICY_DESCRIPTIONS.get(label, DEFAULT_POLICY_DESCRIPTION)


# Seeded in this order; the order is the catalog order shown to users.
DEFAULT_LEAVE_TYPES: list[dict[str, Any]] = [
    dict(
        label=PAID_LEAVE,
        color="#3B82F6",
        accrual_rule="monthly",
        requires_approval=True,
        annual_allowance=18,
        carry_forward_limit=6,
        monthly_allowance=Decimal("1.5"),
    ),
    dict(
        label="Bereavement Leave",
        color="#6B7280",
        accrual_rule="annual",
        requires_approval=True,
        annual_allowance=5,
        carry_forward_limit=0,
    ),
    dict(
        label="Restricted Holiday",
        color="#F59E0B",
        accrual_rule="annual",
        requires_approval=True,
        annual_allowance=2,
        carry_forward_limit=0,
    ),
    dict(
        label=SHORT_LEAVE,
        color="#8B5CF6",
        accrual_rule="monthly",
        requires_approval=True,
        annual_allowance=48,
        carry_forward_limit=0,
        monthly_allowance=Decimal("4"),
        duration_type=DurationType.hours,
    ),
    dict(
        label=WORK_FROM_HOME,
        color="#10B981",
        accrual_rule="monthly",
        requires_approval=True,
        annual_allowance=24,
        carry_forward_limit=22,
        monthly_allowance=Decimal("2"),
    ),
    dict(
        label=ADDITIONAL_WORK_FROM_HOME,
        color="#14B8A6",
        accrual_rule="on_exhaustion",
        requires_approval=True,
        annual_allowance=COMBINED_WFH_ANNUAL_CAP,
        carry_forward_limit=0,
    ),
    dict(
        label="Comp-offs",
        color="#EC4899",
        accrual_rule="earned",
        requires_approval=True,
        annual_allowance=UNLIMITED_ALLOWANCE,
        carry_forward_limit=0,
    ),
    dict(
        label="Special Leave",
        color="#EF4444",
        accrual_rule="on_request",
        requires_approval=True,
        annual_allowance=UNLIMITED_ALLOWANCE,
        carry_forward_limit=0,
    ),
]
