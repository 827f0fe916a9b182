"""
Submission builder (``settlement_modules.receipts.submission``).

Responsibility
--------------
Final gate between an editable payment session and the external payment
service: runs the ordered pre-submit rules, converts the drafts and
deductions into the service's request shape and makes exactly one call per
user action.

Architecture position
---------------------
**Modules layer**.  The only component that calls
``PaymentServiceGateway.submit_payment``.

Invariants enforced
-------------------
* Validation rules run in a fixed order; the first failure wins.
* At most one outstanding submission per builder.  A second ``submit``
  while one is in flight returns ``IN_FLIGHT`` without touching the
  service; after a successful submit every further call returns
  ``ALREADY_SUBMITTED``.
* The request is built only from an AllocationResult that matches a fresh
  recomputation of the same inputs, and only from non-negative amounts.
* All monetary fields in the payload are at two-decimal precision.

Failure modes
-------------
* ``SubmissionValidationError`` -- ``build()`` called on an invalid session.
* ``SubmissionContractError`` -- inconsistent data reached the builder;
  the service is not called.
* ``ExternalServiceError`` from the gateway becomes a ``SERVICE_ERROR``
  outcome; session state is left untouched so the user may retry.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from settlement_engines.allocation import AllocationResult, compute_allocation
from settlement_engines.cash_field import CashFieldState
from settlement_kernel.domain.amounts import DEDUCTION_TOLERANCE, ZERO, round_money
from settlement_kernel.exceptions import (
    ExternalServiceError,
    SubmissionContractError,
    SubmissionValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_modules.receipts.models import (
    CreditNoteDeduction,
    Customer,
    CustomerBalanceState,
)
from settlement_modules.receipts.selection import InvoiceSelectionSet
from settlement_services.gateway import PaymentServiceGateway

logger = get_logger("modules.receipts.submission")


class ValidationFailure(str, Enum):
    """Pre-submit rules, in evaluation order."""

    NO_INVOICES = "no_invoices"
    BANK_ACCOUNT_REQUIRED = "bank_account_required"
    PAYMENT_DATE_REQUIRED = "payment_date_required"
    COVERAGE_MISMATCH = "coverage_mismatch"
    INVALID_CREDIT_NOTE_AMOUNT = "invalid_credit_note_amount"
    CREDIT_NOTES_EXCEED_PAYMENTS = "credit_notes_exceed_payments"
    DEDUCTIONS_EXCEED_PAYMENTS = "deductions_exceed_payments"
    CUSTOMER_REQUIRED = "customer_required"


@dataclass(frozen=True)
class ValidationResult:
    failure: ValidationFailure | None = None
    message: str = ""

    @property
    def is_valid(self) -> bool:
        return self.failure is None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls()

    @classmethod
    def fail(cls, failure: ValidationFailure, message: str) -> ValidationResult:
        return cls(failure, message)


@dataclass(frozen=True)
class SubmissionContext:
    """Session-level fields the user fills in outside the invoice rows."""

    bank_account_id: str | None = None
    payment_date: date | None = None
    global_description: str = ""
    customer_id: str | None = None


# =============================================================================
# Request / response shapes
# =============================================================================


@dataclass(frozen=True)
class PaymentLine:
    invoice_id: str
    discount: Decimal
    amount: Decimal
    bank_account: str | None
    payment_date: date
    description: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "invoiceId": self.invoice_id,
            "discount": round_money(self.discount),
            "amount": round_money(self.amount),
            "bankAccount": self.bank_account,
            "date": self.payment_date.isoformat(),
            "description": self.description,
        }


@dataclass(frozen=True)
class CreditNoteDeductionLine:
    credit_note_id: str
    amount: Decimal
    credit_note_number: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "_id": self.credit_note_id,
            "amount": round_money(self.amount),
            "creditNoteNumber": self.credit_note_number,
        }


@dataclass(frozen=True)
class PaymentRequest:
    """One settlement as sent to the payment service."""

    payments: tuple[PaymentLine, ...]
    customer_id: str | None
    received_amount: Decimal
    balance_deduction_amount: Decimal
    deduct_from_customer_balance: bool
    excess_amount: Decimal
    credit_note_deductions: tuple[CreditNoteDeductionLine, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "payments": [line.to_payload() for line in self.payments],
            "customerId": self.customer_id,
            "receivedAmount": round_money(self.received_amount),
            "balanceDeductionAmount": round_money(self.balance_deduction_amount),
            "deductFromCustomerBalance": self.deduct_from_customer_balance,
            "excessAmount": round_money(self.excess_amount),
            "creditNoteDeductions": [d.to_payload() for d in self.credit_note_deductions],
        }


@dataclass(frozen=True)
class PaymentServiceResponse:
    success: bool
    message: str = ""
    customer: Customer | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> PaymentServiceResponse:
        customer_record = record.get("customer")
        customer = (
            Customer.from_record(customer_record)
            if isinstance(customer_record, dict) and customer_record.get("_id")
            else None
        )
        return cls(
            success=bool(record.get("success")),
            message=str(record.get("message") or ""),
            customer=customer,
        )


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    VALIDATION_FAILED = "validation_failed"
    IN_FLIGHT = "in_flight"
    ALREADY_SUBMITTED = "already_submitted"
    SERVICE_REJECTED = "service_rejected"
    SERVICE_ERROR = "service_error"


@dataclass(frozen=True)
class SubmissionOutcome:
    """What happened to one submit action."""

    status: SubmissionStatus
    message: str = ""
    failure: ValidationFailure | None = None
    request: PaymentRequest | None = None
    response: PaymentServiceResponse | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is SubmissionStatus.SUBMITTED

    @property
    def retryable(self) -> bool:
        return self.status in (
            SubmissionStatus.SERVICE_REJECTED,
            SubmissionStatus.SERVICE_ERROR,
            SubmissionStatus.VALIDATION_FAILED,
        )


# =============================================================================
# Builder
# =============================================================================


@dataclass
class _SubmitState:
    busy: bool = False
    completed: bool = False
    attempts: int = 0
    last_outcome: SubmissionOutcome | None = field(default=None)


class SubmissionBuilder:
    """
    Validate, build and submit one payment session.

    Contract:
        ``validate`` never raises for business input.  ``build`` raises on
        invalid or inconsistent input.  ``submit`` returns a
        ``SubmissionOutcome`` for every expected failure and lets only
        ``SubmissionContractError`` escape.
    """

    def __init__(self, gateway: PaymentServiceGateway | None = None) -> None:
        self._gateway = gateway
        self._lock = threading.Lock()
        self._state = _SubmitState()

    @property
    def in_flight(self) -> bool:
        return self._state.busy

    @property
    def completed(self) -> bool:
        return self._state.completed

    @property
    def can_submit(self) -> bool:
        return not (self._state.busy or self._state.completed)

    @property
    def last_outcome(self) -> SubmissionOutcome | None:
        return self._state.last_outcome

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(
        self,
        *,
        selection: InvoiceSelectionSet,
        deductions: Sequence[CreditNoteDeduction],
        allocation: AllocationResult,
        context: SubmissionContext,
    ) -> ValidationResult:
        if len(selection) == 0:
            return ValidationResult.fail(
                ValidationFailure.NO_INVOICES,
                "Select at least one invoice",
            )

        if (allocation.cash_required > ZERO or allocation.received_amount > ZERO) \
                and not context.bank_account_id:
            return ValidationResult.fail(
                ValidationFailure.BANK_ACCOUNT_REQUIRED,
                "Select a bank account for the cash received",
            )

        if context.payment_date is None:
            return ValidationResult.fail(
                ValidationFailure.PAYMENT_DATE_REQUIRED,
                "Payment date is required",
            )

        if not allocation.coverage_valid:
            return ValidationResult.fail(
                ValidationFailure.COVERAGE_MISMATCH,
                f"Payment sources fall short by {allocation.remaining_amount}",
            )

        for deduction in deductions:
            amount = deduction.amount
            if amount is None or not (ZERO < amount <= deduction.remaining_balance):
                return ValidationResult.fail(
                    ValidationFailure.INVALID_CREDIT_NOTE_AMOUNT,
                    f"Credit note {deduction.credit_note_number} needs an amount "
                    f"between 0 and {deduction.remaining_balance}",
                )

        limit = allocation.payments_total + DEDUCTION_TOLERANCE
        if allocation.total_credit_note_deduction > limit:
            return ValidationResult.fail(
                ValidationFailure.CREDIT_NOTES_EXCEED_PAYMENTS,
                f"Credit notes ({allocation.total_credit_note_deduction}) exceed "
                f"the payments total ({allocation.payments_total})",
            )

        if allocation.total_credit_note_deduction + allocation.clamped_balance_deduction > limit:
            return ValidationResult.fail(
                ValidationFailure.DEDUCTIONS_EXCEED_PAYMENTS,
                "Balance and credit-note deductions exceed the payments total",
            )

        if allocation.clamped_balance_deduction > ZERO and not context.customer_id:
            return ValidationResult.fail(
                ValidationFailure.CUSTOMER_REQUIRED,
                "A customer is required to deduct from the customer balance",
            )

        return ValidationResult.ok()

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build(
        self,
        *,
        selection: InvoiceSelectionSet,
        deductions: Sequence[CreditNoteDeduction],
        balance: CustomerBalanceState,
        cash: CashFieldState,
        allocation: AllocationResult,
        context: SubmissionContext,
    ) -> PaymentRequest:
        """
        Convert a valid session into a PaymentRequest.

        Raises:
            SubmissionValidationError: a pre-submit rule fails.
            SubmissionContractError: the inputs are internally inconsistent.
        """
        validation = self.validate(
            selection=selection,
            deductions=deductions,
            allocation=allocation,
            context=context,
        )
        if not validation.is_valid:
            raise SubmissionValidationError(validation.failure.value, validation.message)

        self._check_contract(selection, deductions, balance, cash, allocation)

        payments = tuple(
            PaymentLine(
                invoice_id=draft.invoice_id,
                discount=round_money(draft.discount),
                amount=round_money(draft.amount),
                bank_account=context.bank_account_id,
                payment_date=context.payment_date,
                description=draft.description if draft.description.strip()
                else context.global_description,
            )
            for draft in selection.drafts()
        )
        credit_note_lines = tuple(
            CreditNoteDeductionLine(
                credit_note_id=d.credit_note_id,
                amount=round_money(d.amount),
                credit_note_number=d.credit_note_number,
            )
            for d in deductions
        )

        return PaymentRequest(
            payments=payments,
            customer_id=context.customer_id,
            received_amount=allocation.received_amount,
            balance_deduction_amount=allocation.clamped_balance_deduction,
            deduct_from_customer_balance=allocation.clamped_balance_deduction > ZERO,
            excess_amount=allocation.excess_amount,
            credit_note_deductions=credit_note_lines,
        )

    def _check_contract(
        self,
        selection: InvoiceSelectionSet,
        deductions: Sequence[CreditNoteDeduction],
        balance: CustomerBalanceState,
        cash: CashFieldState,
        allocation: AllocationResult,
    ) -> None:
        for draft in selection.drafts():
            if draft.amount < ZERO or draft.discount < ZERO:
                raise SubmissionContractError(
                    f"negative draft figures for invoice {draft.invoice_id}"
                )
        for d in deductions:
            if d.amount is not None and d.amount < ZERO:
                raise SubmissionContractError(
                    f"negative deduction for credit note {d.credit_note_id}"
                )

        for name in (
            "payments_total", "received_amount", "clamped_balance_deduction",
            "total_credit_note_deduction", "excess_amount", "remaining_amount",
        ):
            if getattr(allocation, name) < ZERO:
                raise SubmissionContractError(f"negative {name} in allocation")

        if selection.payments_total != allocation.payments_total:
            raise SubmissionContractError(
                f"drafts total {selection.payments_total} != allocation "
                f"payments_total {allocation.payments_total}"
            )

        fresh = compute_allocation(selection.drafts(), balance, deductions, cash)
        if fresh != allocation:
            raise SubmissionContractError("allocation is stale or was modified")

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(
        self,
        *,
        selection: InvoiceSelectionSet,
        deductions: Sequence[CreditNoteDeduction],
        balance: CustomerBalanceState,
        cash: CashFieldState,
        allocation: AllocationResult,
        context: SubmissionContext,
    ) -> SubmissionOutcome:
        """
        Validate, build and send the settlement exactly once.

        A concurrent call while one is in flight is refused, not queued.
        """
        if self._state.completed:
            return self._record(SubmissionOutcome(
                SubmissionStatus.ALREADY_SUBMITTED,
                "This settlement has already been submitted",
            ))
        if not self._lock.acquire(blocking=False):
            logger.warning("payment_submission_refused_in_flight")
            return SubmissionOutcome(
                SubmissionStatus.IN_FLIGHT,
                "A submission is already in progress",
            )

        try:
            if self._state.completed:
                return self._record(SubmissionOutcome(
                    SubmissionStatus.ALREADY_SUBMITTED,
                    "This settlement has already been submitted",
                ))

            validation = self.validate(
                selection=selection,
                deductions=deductions,
                allocation=allocation,
                context=context,
            )
            if not validation.is_valid:
                logger.info("payment_submission_invalid", extra={
                    "failure": validation.failure,
                })
                return self._record(SubmissionOutcome(
                    SubmissionStatus.VALIDATION_FAILED,
                    validation.message,
                    failure=validation.failure,
                ))

            request = self.build(
                selection=selection,
                deductions=deductions,
                balance=balance,
                cash=cash,
                allocation=allocation,
                context=context,
            )
            if self._gateway is None:
                raise SubmissionContractError("no payment service configured")

            self._state.busy = True
            self._state.attempts += 1
            return self._record(self._send(request))
        finally:
            self._state.busy = False
            self._lock.release()

    def _send(self, request: PaymentRequest) -> SubmissionOutcome:
        logger.info("payment_submission_started", extra={
            "attempt": self._state.attempts,
            "invoice_count": len(request.payments),
            "credit_note_count": len(request.credit_note_deductions),
            "received_amount": request.received_amount,
            "balance_deduction_amount": request.balance_deduction_amount,
            "excess_amount": request.excess_amount,
        })

        try:
            record = self._gateway.submit_payment(request.to_payload())
        except ExternalServiceError as e:
            logger.warning("payment_submission_failed", extra={
                "error_code": e.code,
                "operation": e.operation,
                "detail": e.detail,
            })
            return SubmissionOutcome(
                SubmissionStatus.SERVICE_ERROR,
                str(e),
                request=request,
            )

        response = PaymentServiceResponse.from_record(record or {})
        if not response.success:
            logger.warning("payment_submission_rejected", extra={
                "service_message": response.message,
            })
            return SubmissionOutcome(
                SubmissionStatus.SERVICE_REJECTED,
                response.message or "Payment service rejected the settlement",
                request=request,
                response=response,
            )

        self._state.completed = True
        logger.info("payment_submitted", extra={
            "invoice_count": len(request.payments),
            "attempt": self._state.attempts,
        })
        return SubmissionOutcome(
            SubmissionStatus.SUBMITTED,
            response.message,
            request=request,
            response=response,
        )

    def _record(self, outcome: SubmissionOutcome) -> SubmissionOutcome:
        self._state.last_outcome = outcome
        return outcome
