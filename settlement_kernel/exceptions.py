"""
Typed exception hierarchy for the settlement subsystem.

Every error has a typed class (catch by type, not message), a class-level
``code`` (machine-readable, safe to hand to a UI), and structured
attributes instead of data buried in the message.

    SettlementError (base)
    |
    +-- AmountError
    |   +-- InvalidAmountError
    |
    +-- SelectionError
    |   +-- InvoiceNotSelectedError
    |   +-- UnknownDraftFieldError
    |
    +-- CreditNoteError
    |   +-- CreditNoteNotAttachedError
    |   +-- CreditNoteAmountExceededError
    |   +-- NegativeCreditNoteAmountError
    |
    +-- CashFieldError
    |   +-- NegativeReceivedAmountError
    |
    +-- BalanceError
    |   +-- BalanceNotInUseError
    |
    +-- SubmissionError
    |   +-- SubmissionValidationError
    |   +-- SubmissionContractError
    |
    +-- ExternalServiceError
    +-- SessionClosedError

Input validation errors (AmountError, CreditNoteError, CashFieldError,
BalanceError, UnknownDraftFieldError) are raised by the parse/clamp
helpers and caught at the public edit operations, which turn them into an
``EditResult`` carrying the same ``code``.  They never reach the UI as exceptions.

SubmissionContractError is the programmer-error category: the builder
refuses to call the payment service when it is raised.

Handling pattern:

    try:
        response = gateway.submit_payment(request)
    except ExternalServiceError as e:
        log.warning("submit failed", extra={"code": e.code, "operation": e.operation})
"""

from decimal import Decimal
from typing import Any


class SettlementError(Exception):
    """
    Base exception for all settlement errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "SETTLEMENT_ERROR"


# Amount parsing


class AmountError(SettlementError):
    """Base exception for monetary input errors."""

    code: str = "AMOUNT_ERROR"


class InvalidAmountError(AmountError):
    """Value cannot be interpreted as a monetary amount."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: Any):
        self.value = repr(value)
        super().__init__(f"Invalid monetary amount: {value!r}")


# Invoice selection


class SelectionError(SettlementError):
    """Base exception for invoice selection errors."""

    code: str = "SELECTION_ERROR"


class InvoiceNotSelectedError(SelectionError):
    """No draft exists for the given invoice."""

    code: str = "INVOICE_NOT_SELECTED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice is not selected: {invoice_id}")


class UnknownDraftFieldError(SelectionError):
    """Draft field name is not one of description, discount, amount."""

    code: str = "UNKNOWN_DRAFT_FIELD"

    def __init__(self, field: Any):
        self.field = str(field)
        super().__init__(f"Unknown draft field: {field!r}")


# Credit notes


class CreditNoteError(SettlementError):
    """Base exception for credit-note deduction errors."""

    code: str = "CREDIT_NOTE_ERROR"


class CreditNoteNotAttachedError(CreditNoteError):
    """Credit note has no deduction in this session."""

    code: str = "CREDIT_NOTE_NOT_ATTACHED"

    def __init__(self, credit_note_id: str):
        self.credit_note_id = credit_note_id
        super().__init__(f"Credit note is not attached: {credit_note_id}")


class CreditNoteAmountExceededError(CreditNoteError):
    """Deduction amount is larger than the note's remaining balance."""

    code: str = "CREDIT_NOTE_AMOUNT_EXCEEDED"

    def __init__(
        self,
        credit_note_id: str,
        amount: Decimal,
        remaining_balance: Decimal,
    ):
        self.credit_note_id = credit_note_id
        self.amount = str(amount)
        self.remaining_balance = str(remaining_balance)
        super().__init__(
            f"Deduction {amount} exceeds remaining balance {remaining_balance} "
            f"of credit note {credit_note_id}"
        )


class NegativeCreditNoteAmountError(CreditNoteError):
    """Deduction amount is negative."""

    code: str = "NEGATIVE_CREDIT_NOTE_AMOUNT"

    def __init__(self, credit_note_id: str, amount: Decimal):
        self.credit_note_id = credit_note_id
        self.amount = str(amount)
        super().__init__(
            f"Deduction for credit note {credit_note_id} cannot be negative: {amount}"
        )


# Cash field


class CashFieldError(SettlementError):
    """Base exception for received-amount input errors."""

    code: str = "CASH_FIELD_ERROR"


class NegativeReceivedAmountError(CashFieldError):
    """Received cash cannot be negative."""

    code: str = "NEGATIVE_RECEIVED_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = str(amount)
        super().__init__(f"Received amount cannot be negative: {amount}")


# Customer balance


class BalanceError(SettlementError):
    """Base exception for customer-balance input errors."""

    code: str = "BALANCE_ERROR"


class BalanceNotInUseError(BalanceError):
    """A contribution was entered while balance use is switched off."""

    code: str = "BALANCE_NOT_IN_USE"

    def __init__(self, customer_id: str | None, amount: Decimal):
        self.customer_id = customer_id
        self.amount = str(amount)
        super().__init__(
            f"Turn on balance use before applying {amount} from the customer balance"
        )


# Submission


class SubmissionError(SettlementError):
    """Base exception for submission errors."""

    code: str = "SUBMISSION_ERROR"


class SubmissionValidationError(SubmissionError):
    """A pre-submit rule failed."""

    code: str = "SUBMISSION_VALIDATION_FAILED"

    def __init__(self, failure: str, detail: str):
        self.failure = failure
        self.detail = detail
        super().__init__(f"Submission rejected ({failure}): {detail}")


class SubmissionContractError(SubmissionError):
    """
    Inconsistent data reached the builder.

    Fatal for the attempt: the payment service must not be called.
    """

    code: str = "SUBMISSION_CONTRACT_VIOLATION"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Refusing to submit inconsistent settlement: {detail}")


# External collaborators


class ExternalServiceError(SettlementError):
    """A consumed service (search, bank list, submit) failed."""

    code: str = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"External service call {operation} failed"
            + (f": {detail}" if detail else "")
        )


class SessionClosedError(SettlementError):
    """Operation attempted on an abandoned payment session."""

    code: str = "SESSION_CLOSED"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Payment session is closed: {session_id}")
