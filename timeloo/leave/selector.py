"""Leave-type selector: catalog-ordered options with availability."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from timeloo.common.constants import UNLIMITED_LABEL
from timeloo.config import settings
from timeloo.leave.presentation import format_amount
from timeloo.leave.schemas import BalanceOut, LeaveTypeOut, SelectorOption, SelectorOut


def option_for(
    leave_type: LeaveTypeOut,
    balance: Optional[BalanceOut],
    *,
    clamp: Optional[bool] = None,
) -> SelectorOption:
    """Build one option; a type without a balance row counts as 0/0.

    ``clamp`` follows ``CLAMP_AVAILABLE_AT_ZERO`` unless given, the same
    display policy as the balance card.
    """
    clamp = settings.CLAMP_AVAILABLE_AT_ZERO if clamp is None else clamp
    if leave_type.is_unlimited:
        label, disabled = UNLIMITED_LABEL, False
    elif balance is None:
        label, disabled = "0/0", True
    else:
        available = max(balance.available, Decimal("0")) if clamp else balance.available
        label = f"{format_amount(available)}/{format_amount(balance.allocated)}"
        disabled = not balance.can_apply
    return SelectorOption(
        id=leave_type.id,
        label=leave_type.label,
        color=leave_type.color,
        balance_label=label,
        requires_approval=leave_type.requires_approval,
        disabled=disabled,
        description=leave_type.description or "",
    )


class LeaveTypeSelector:
    """Selection state over the leave catalog.

    Options keep the order of ``leave_types``.  Disabled or unknown types
    cannot be selected: :meth:`select` leaves the selection as it was and
    returns ``False``.
    """

    def __init__(
        self,
        leave_types: Sequence[LeaveTypeOut],
        balances: Mapping[uuid.UUID, BalanceOut],
        selected: Optional[uuid.UUID] = None,
        *,
        clamp: Optional[bool] = None,
    ) -> None:
        self.options = [
            option_for(lt, balances.get(lt.id), clamp=clamp) for lt in leave_types
        ]
        self._by_id = {opt.id: opt for opt in self.options}
        self.selected: Optional[uuid.UUID] = None
        if selected is not None:
            self.select(selected)

    def is_selectable(self, leave_type_id: uuid.UUID) -> bool:
        option = self._by_id.get(leave_type_id)
        return option is not None and not option.disabled

    def select(self, leave_type_id: uuid.UUID) -> bool:
        if not self.is_selectable(leave_type_id):
            return False
        self.selected = leave_type_id
        return True

    def to_out(self) -> SelectorOut:
        return SelectorOut(options=self.options, selected=self.selected)
