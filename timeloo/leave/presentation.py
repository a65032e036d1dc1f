"""Balance-card view models.

``build_balance_card`` is a pure function of a :class:`BalanceState` and the
leave type: it decides between the loading, error, hidden and populated
render states and formats every number the card shows.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from timeloo.common.constants import (
    ADDITIONAL_WORK_FROM_HOME,
    ANNUAL_LEAVE,
    PAID_LEAVE,
    UNLIMITED_LABEL,
)
from timeloo.config import settings
from timeloo.leave.schemas import (
    BadgeVariant,
    BalanceCard,
    BalanceState,
    LeaveTypeOut,
    MonthlyBalanceOut,
)

ERROR_MESSAGE = "Error loading balance"
MONTHLY_LIMIT_WARNING = (
    "Monthly limit reached. Wait for next month to apply for paid leave."
)

# Share of the allocation under which the remaining balance is flagged
LOW_BALANCE_RATIO = Decimal("0.3")


def format_amount(value: Decimal) -> str:
    """``Decimal("2.0")`` → ``"2"``, ``Decimal("1.5")`` → ``"1.5"``."""
    text = format(Decimal(value).normalize(), "f")
    return "0" if text in ("-0", "") else text


def badge_variant(remaining: Decimal, allowance: Decimal) -> BadgeVariant:
    if remaining <= 0:
        return "destructive"
    if remaining <= allowance * LOW_BALANCE_RATIO:
        return "secondary"
    return "default"


def is_hidden(state: BalanceState, leave_type: LeaveTypeOut) -> bool:
    """Cards without a balance, and Additional WFH while locked, render nothing."""
    if state.balance is None:
        return True
    return leave_type.label == ADDITIONAL_WORK_FROM_HOME and not state.balance.can_apply


def build_balance_card(
    state: BalanceState,
    leave_type: LeaveTypeOut,
    *,
    monthly: Optional[MonthlyBalanceOut] = None,
    clamp: Optional[bool] = None,
) -> BalanceCard:
    """Render-state and display strings for one leave type's balance.

    ``clamp`` defaults to the ``CLAMP_AVAILABLE_AT_ZERO`` setting; it only
    affects what is displayed, never the underlying balance.
    """
    if state.loading:
        return BalanceCard(state="loading")
    if state.error:
        return BalanceCard(state="error", message=ERROR_MESSAGE)
    if is_hidden(state, leave_type):
        return BalanceCard(state="hidden")

    balance = state.balance
    clamp = settings.CLAMP_AVAILABLE_AT_ZERO if clamp is None else clamp
    unit = leave_type.duration_type.value

    def _show(value: Decimal) -> str:
        return f"{format_amount(value)} {unit}"

    card = BalanceCard(
        state="populated",
        title=leave_type.label,
        allowance_label="Annual Allowance",
        used=_show(balance.used),
    )

    if leave_type.is_unlimited:
        card.allowance = UNLIMITED_LABEL
        card.available = UNLIMITED_LABEL
        card.badge_variant = "default"
        return card

    available = max(balance.available, Decimal("0")) if clamp else balance.available
    card.allowance = _show(balance.allocated)
    card.available = _show(available)
    card.badge_variant = badge_variant(balance.available, balance.allocated)

    if monthly is not None:
        if leave_type.label != ANNUAL_LEAVE:
            card.allowance_label = "Monthly Allowance"
            card.allowance = _show(monthly.monthly_allowance)
        if monthly.carried_forward > 0:
            card.carried_forward = f"+{_show(monthly.carried_forward)}"
        if monthly.remaining_this_month <= 0:
            card.badge_variant = "destructive"
            if leave_type.label == PAID_LEAVE:
                card.warning = MONTHLY_LIMIT_WARNING

    return card
