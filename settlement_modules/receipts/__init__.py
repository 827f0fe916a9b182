"""
Receipts Module.

Settles a batch of customer invoices from cash received, the customer's
stored balance and standalone credit notes.

Allocation comes from the shared engine; this module owns the editable
session state and the single submission.
"""

from settlement_modules.receipts.credit_notes import CreditNoteDeductionTracker
from settlement_modules.receipts.events import ChangeEvent
from settlement_modules.receipts.models import (
    BankAccount,
    CreditNote,
    CreditNoteDeduction,
    Customer,
    CustomerBalanceState,
    EditResult,
    EditStatus,
    Invoice,
    InvoiceBalances,
    PaymentDraft,
)
from settlement_modules.receipts.selection import DraftField, InvoiceSelectionSet
from settlement_modules.receipts.service import PaymentSession
from settlement_modules.receipts.submission import (
    PaymentRequest,
    PaymentServiceResponse,
    SubmissionBuilder,
    SubmissionContext,
    SubmissionOutcome,
    SubmissionStatus,
    ValidationFailure,
    ValidationResult,
)

__all__ = [
    "BankAccount",
    "ChangeEvent",
    "CreditNote",
    "CreditNoteDeduction",
    "CreditNoteDeductionTracker",
    "Customer",
    "CustomerBalanceState",
    "DraftField",
    "EditResult",
    "EditStatus",
    "Invoice",
    "InvoiceBalances",
    "InvoiceSelectionSet",
    "PaymentDraft",
    "PaymentRequest",
    "PaymentServiceResponse",
    "PaymentSession",
    "SubmissionBuilder",
    "SubmissionContext",
    "SubmissionOutcome",
    "SubmissionStatus",
    "ValidationFailure",
    "ValidationResult",
]
