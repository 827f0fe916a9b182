"""
Module: settlement_engines.cash_field
Responsibility:
    Two-state machine for the "cash received" field.  In AUTO the field
    tracks whatever cash is still required after balance and credit-note
    deductions; a direct user edit freezes it in MANUAL until the user
    clears it or explicitly resets it.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Transitions come only from CASH_FIELD_TRANSITIONS; there is no
      boolean side-channel.
    - In AUTO, ``received_amount(cash_required) == cash_required``.
    - In MANUAL, ``manual_value`` is never None and never negative.

Failure modes:
    - InvalidAmountError from ``user_input`` on non-numeric text.
    - NegativeReceivedAmountError from ``user_input`` on a negative value.
    - KeyError-free: every (mode, event) pair has a transition.

Usage:
    state = CashFieldState.auto()
    state = state.user_input("600")          # MANUAL, 600.00
    state = state.transition(CashFieldEvent.RESET)   # back to AUTO
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from settlement_kernel.domain.amounts import ZERO, parse_optional_amount
from settlement_kernel.exceptions import NegativeReceivedAmountError
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.cash_field")


class CashFieldMode(str, Enum):
    """Who owns the received-amount figure."""

    AUTO = "auto"  # tracks cash_required
    MANUAL = "manual"  # frozen at the user's last typed value


class CashFieldEvent(str, Enum):
    """Inputs to the cash-field state machine."""

    UPSTREAM_CHANGED = "upstream_changed"  # drafts, balance or credit notes changed
    USER_EDIT = "user_edit"  # user typed a value
    USER_CLEAR = "user_clear"  # user emptied the field
    RESET = "reset"  # explicit "reset" / "use full balance"


CASH_FIELD_TRANSITIONS: dict[tuple[CashFieldMode, CashFieldEvent], CashFieldMode] = {
    (CashFieldMode.AUTO, CashFieldEvent.UPSTREAM_CHANGED): CashFieldMode.AUTO,
    (CashFieldMode.AUTO, CashFieldEvent.USER_EDIT): CashFieldMode.MANUAL,
    (CashFieldMode.AUTO, CashFieldEvent.USER_CLEAR): CashFieldMode.AUTO,
    (CashFieldMode.AUTO, CashFieldEvent.RESET): CashFieldMode.AUTO,
    (CashFieldMode.MANUAL, CashFieldEvent.UPSTREAM_CHANGED): CashFieldMode.MANUAL,
    (CashFieldMode.MANUAL, CashFieldEvent.USER_EDIT): CashFieldMode.MANUAL,
    (CashFieldMode.MANUAL, CashFieldEvent.USER_CLEAR): CashFieldMode.AUTO,
    (CashFieldMode.MANUAL, CashFieldEvent.RESET): CashFieldMode.AUTO,
}


@dataclass(frozen=True)
class CashFieldState:
    """
    Immutable snapshot of the cash-field state machine.

    Contract:
        ``manual_value`` is set iff ``mode`` is MANUAL.
    """

    mode: CashFieldMode = CashFieldMode.AUTO
    manual_value: Decimal | None = None

    def __post_init__(self) -> None:
        if self.mode is CashFieldMode.MANUAL and self.manual_value is None:
            raise ValueError("MANUAL cash field requires a value")
        if self.mode is CashFieldMode.AUTO and self.manual_value is not None:
            raise ValueError("AUTO cash field cannot carry a manual value")
        if self.manual_value is not None and self.manual_value < ZERO:
            raise ValueError("Manual received amount cannot be negative")

    @classmethod
    def auto(cls) -> CashFieldState:
        return cls()

    @property
    def is_manual(self) -> bool:
        return self.mode is CashFieldMode.MANUAL

    def transition(
        self,
        event: CashFieldEvent,
        value: Decimal | None = None,
    ) -> CashFieldState:
        """Apply ``event``.  ``value`` is required for USER_EDIT and ignored otherwise."""
        next_mode = CASH_FIELD_TRANSITIONS[(self.mode, event)]

        if event is CashFieldEvent.USER_EDIT:
            if value is None:
                raise ValueError("USER_EDIT requires a value")
            new_state = CashFieldState(mode=next_mode, manual_value=value)
        elif next_mode is CashFieldMode.MANUAL:
            new_state = self
        else:
            new_state = CashFieldState.auto()

        if new_state.mode is not self.mode:
            logger.debug(
                "cash_field_mode_changed",
                extra={
                    "event": event.value,
                    "from_mode": self.mode.value,
                    "to_mode": new_state.mode.value,
                },
            )
        return new_state

    def user_input(self, raw: Any) -> CashFieldState:
        """
        Interpret what the user typed into the cash field.

        Blank input clears the field (back to AUTO); anything else is parsed
        and becomes the MANUAL value.
        """
        value = parse_optional_amount(raw)
        if value is None:
            return self.transition(CashFieldEvent.USER_CLEAR)
        if value < ZERO:
            raise NegativeReceivedAmountError(value)
        return self.transition(CashFieldEvent.USER_EDIT, value)

    def received_amount(self, cash_required: Decimal) -> Decimal:
        """The figure shown in the cash field for the given auto-fill value."""
        if self.mode is CashFieldMode.MANUAL:
            return self.manual_value
        return cash_required
