"""
Module: settlement_engines.allocation
Responsibility:
    Split one settlement across up to three funding sources (cash received,
    the customer's stored balance, standalone credit notes) so that they
    cover the selected invoices' payable total, and report whether the
    settlement balances.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settlement_kernel.

Invariants enforced:
    - payments_total is exactly the sum of the draft amounts it was given.
    - clamped_balance_deduction lies in [0, min(stored_balance, payments_total)].
    - excess_amount and remaining_amount are never both positive.
    - In AUTO cash mode, received_amount == cash_required.
    - Purity: identical inputs produce identical results; nothing is cached
      between calls.

Failure modes:
    - None.  The calculator never raises for bad business input; an
      unbalanced settlement is reported through ``coverage_valid=False``.
      Non-numeric or negative balance contributions count as zero.

Usage:
    from settlement_engines.allocation import compute_allocation
    from settlement_engines.cash_field import CashFieldState

    result = compute_allocation(
        drafts=selection.drafts(),
        balance=balance_state,
        deductions=tracker.deductions(),
        cash=CashFieldState.auto(),
    )
    if not result.coverage_valid:
        ...
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from settlement_engines.cash_field import CashFieldMode, CashFieldState
from settlement_engines.tracer import traced_engine
from settlement_kernel.domain.amounts import (
    COVERAGE_TOLERANCE,
    ZERO,
    non_negative,
    parse_amount,
    round_money,
)
from settlement_kernel.exceptions import InvalidAmountError
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


class PayableLine(Protocol):
    """Anything carrying the amount being paid toward one invoice."""

    amount: Decimal


class DeductionLine(Protocol):
    """Anything carrying a credit-note deduction (None while blank)."""

    amount: Decimal | None


class BalanceSource(Protocol):
    """The customer's stored balance and how much of it the user wants applied."""

    stored_balance: Decimal
    balance_contribution: Any
    use_balance: bool


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete, internally consistent allocation snapshot.

    Contract:
        Derived from the inputs only; recomputed on every change and never
        patched.  All amounts are at canonical two-decimal precision.
    Guarantees:
        - total_coverage == received_amount + clamped_balance_deduction
          + total_credit_note_deduction.
        - excess_amount == max(0, total_coverage - payments_total).
        - remaining_amount == max(0, payments_total - total_coverage).
        - coverage_valid == (remaining_amount < 0.01).
    Non-goals:
        - Does not validate ancillary submission fields (bank, date).
    """

    payments_total: Decimal
    total_credit_note_deduction: Decimal
    safe_max_balance_usage: Decimal
    clamped_balance_deduction: Decimal
    cash_required: Decimal
    received_amount: Decimal
    total_coverage: Decimal
    excess_amount: Decimal
    remaining_amount: Decimal
    projected_balance_after: Decimal
    coverage_valid: bool
    cash_mode: CashFieldMode

    @property
    def received_amount_is_manual(self) -> bool:
        return self.cash_mode is CashFieldMode.MANUAL

    @property
    def has_excess(self) -> bool:
        return self.excess_amount > ZERO

    @property
    def has_shortfall(self) -> bool:
        return self.remaining_amount > ZERO


def _coerce_contribution(value: Any) -> Decimal:
    """Balance contribution as typed by the user; garbage and negatives count as 0."""
    try:
        amount = parse_amount(value)
    except InvalidAmountError:
        return ZERO
    return non_negative(amount)


class AllocationCalculator:
    """
    Compute the settlement's AllocationResult.

    Contract:
        Pure function over (drafts, balance, deductions, cash field).
        No I/O, no hidden state beyond the cash-field mode it is handed.
    Guarantees:
        - Step order: payments total, balance clamp, credit-note total,
          cash required (the auto-fill value), received amount, coverage,
          excess, remaining, validity, projected balance.
    Non-goals:
        - Does not clamp individual credit-note deductions; the tracker
          does that at entry time.
    """

    @traced_engine(
        "allocation",
        "1.0",
        fingerprint_fields=("drafts", "balance", "deductions", "cash"),
    )
    def compute(
        self,
        *,
        drafts: Sequence[PayableLine],
        balance: BalanceSource,
        deductions: Sequence[DeductionLine],
        cash: CashFieldState,
    ) -> AllocationResult:
        payments_total = round_money(
            sum((draft.amount for draft in drafts), ZERO)
        )

        stored_balance = round_money(balance.stored_balance)
        safe_max_balance_usage = non_negative(min(stored_balance, payments_total))

        if balance.use_balance:
            contribution = _coerce_contribution(balance.balance_contribution)
            clamped_balance_deduction = min(contribution, safe_max_balance_usage)
        else:
            clamped_balance_deduction = ZERO

        total_credit_note_deduction = round_money(
            sum(
                (d.amount for d in deductions if d.amount is not None),
                ZERO,
            )
        )

        cash_required = non_negative(
            payments_total - clamped_balance_deduction - total_credit_note_deduction
        )
        received_amount = round_money(cash.received_amount(cash_required))

        total_coverage = round_money(
            received_amount + clamped_balance_deduction + total_credit_note_deduction
        )
        excess_amount = non_negative(total_coverage - payments_total)
        remaining_amount = non_negative(payments_total - total_coverage)
        coverage_valid = remaining_amount < COVERAGE_TOLERANCE

        projected_balance_after = non_negative(
            stored_balance - clamped_balance_deduction + excess_amount
        )

        assert not (excess_amount > ZERO and remaining_amount > ZERO), (
            f"Excess {excess_amount} and shortfall {remaining_amount} "
            f"cannot coexist"
        )

        result = AllocationResult(
            payments_total=payments_total,
            total_credit_note_deduction=total_credit_note_deduction,
            safe_max_balance_usage=safe_max_balance_usage,
            clamped_balance_deduction=clamped_balance_deduction,
            cash_required=cash_required,
            received_amount=received_amount,
            total_coverage=total_coverage,
            excess_amount=excess_amount,
            remaining_amount=remaining_amount,
            projected_balance_after=projected_balance_after,
            coverage_valid=coverage_valid,
            cash_mode=cash.mode,
        )

        logger.debug("allocation_computed", extra={
            "payments_total": str(payments_total),
            "balance_deduction": str(clamped_balance_deduction),
            "credit_note_deduction": str(total_credit_note_deduction),
            "cash_required": str(cash_required),
            "received_amount": str(received_amount),
            "excess_amount": str(excess_amount),
            "remaining_amount": str(remaining_amount),
            "coverage_valid": coverage_valid,
            "cash_mode": cash.mode.value,
            "draft_count": len(drafts),
            "deduction_count": len(deductions),
        })

        return result


_calculator = AllocationCalculator()


def compute_allocation(
    drafts: Sequence[PayableLine],
    balance: BalanceSource,
    deductions: Sequence[DeductionLine],
    cash: CashFieldState,
) -> AllocationResult:
    """Convenience wrapper around a shared stateless AllocationCalculator."""
    return _calculator.compute(
        drafts=drafts,
        balance=balance,
        deductions=deductions,
        cash=cash,
    )
