"""
Settlement Domain Models (``settlement_modules.receipts.models``).

Responsibility
--------------
Value objects for one payment session: read-only records from the external
stores (invoices, credit notes, customers, bank accounts) and the mutable
per-session drafts layered over them (payment drafts, credit-note
deductions, the customer balance state).  Also the ``EditResult`` returned
by every user edit.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by the
selection set, the credit-note tracker, the submission builder and the
session.

Invariants enforced
-------------------
* External records are ``frozen=True``; drafts are the only mutable state.
* All monetary fields are ``Decimal`` at two-decimal precision -- never
  ``float``.
* ``PaymentDraft.original_discount`` is a snapshot taken at selection time.

Failure modes
-------------
* ``from_record`` raises ``InvalidAmountError`` for non-numeric amounts and
  ``ValueError`` for records without an id.  ``parse_records`` turns both
  into a logged skip.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from settlement_kernel.domain.amounts import ZERO, non_negative, parse_amount
from settlement_kernel.exceptions import AmountError
from settlement_kernel.logging_config import get_logger

logger = get_logger("modules.receipts.models")

T = TypeVar("T")


def _record_id(value: Any) -> str | None:
    """Ids arrive either bare or as an embedded ``{"_id": ...}`` document."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("_id")
        if value is None:
            return None
    return str(value)


def _require_id(record: dict[str, Any], kind: str) -> str:
    record_id = _record_id(record.get("_id"))
    if not record_id:
        raise ValueError(f"{kind} record has no _id")
    return record_id


def _amount_or_zero(value: Any) -> Decimal:
    return ZERO if value is None else parse_amount(value)


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# =============================================================================
# External records (read-only)
# =============================================================================


@dataclass(frozen=True)
class Invoice:
    """An outstanding customer invoice as held by the invoice store."""
    id: str
    total_amount: Decimal
    total_payed_amount: Decimal
    balance_to_receive: Decimal  # total - payed - committed discount
    discount: Decimal = ZERO  # previously committed
    customer_id: str | None = None
    name: str = ""

    def __post_init__(self):
        for attr in ("total_amount", "total_payed_amount", "balance_to_receive", "discount"):
            object.__setattr__(self, attr, parse_amount(getattr(self, attr)))
        if self.total_amount < ZERO:
            raise ValueError("Invoice total_amount cannot be negative")
        if self.discount < ZERO:
            raise ValueError("Invoice discount cannot be negative")
        if self.balance_to_receive > self.total_amount:
            logger.warning(
                "invoice_balance_exceeds_total",
                extra={
                    "invoice_id": self.id,
                    "balance_to_receive": str(self.balance_to_receive),
                    "total_amount": str(self.total_amount),
                },
            )

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Invoice:
        """Build from the invoice store's record shape."""
        total = parse_amount(record["totalAmount"])
        payed = _amount_or_zero(record.get("totalPayedAmount"))
        discount = _amount_or_zero(record.get("discount"))
        raw_balance = record.get("balanceToReceive")
        balance = (
            total - payed - discount if raw_balance is None else parse_amount(raw_balance)
        )
        return cls(
            id=_require_id(record, "Invoice"),
            total_amount=total,
            total_payed_amount=payed,
            balance_to_receive=balance,
            discount=discount,
            customer_id=_record_id(record.get("customer") or record.get("customerId")),
            name=record.get("name", "") or "",
        )


@dataclass(frozen=True)
class CreditNote:
    """A standalone credit note with a remaining balance."""
    id: str
    credit_note_number: str
    remaining_balance: Decimal
    description: str = ""
    issued_on: date | None = None
    customer_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "remaining_balance", parse_amount(self.remaining_balance))

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CreditNote:
        return cls(
            id=_require_id(record, "CreditNote"),
            credit_note_number=str(record.get("creditNoteNumber", "")),
            remaining_balance=_amount_or_zero(record.get("remainingBalance")),
            description=record.get("description", "") or "",
            issued_on=_parse_date(record.get("date")),
            customer_id=_record_id(record.get("customer")),
        )


@dataclass(frozen=True)
class Customer:
    """A customer and the credit balance stored on their account."""
    id: str
    name: str
    code: str = ""
    balance: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, "balance", parse_amount(self.balance))

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Customer:
        return cls(
            id=_require_id(record, "Customer"),
            name=record.get("name", "") or "",
            code=str(record.get("Code", "") or ""),
            balance=_amount_or_zero(record.get("balance")),
        )


@dataclass(frozen=True)
class BankAccount:
    """A bank account cash can be received into."""
    id: str
    name: str

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> BankAccount:
        return cls(id=_require_id(record, "BankAccount"), name=record.get("name", "") or "")


def parse_records(
    records: Iterable[Any],
    factory: Callable[[dict[str, Any]], T],
    kind: str,
) -> list[T]:
    """
    Parse service records, skipping any that are malformed.

    One bad record must not sink a whole search or listing; each skip is
    logged as ``<kind>_record_skipped``.
    """
    parsed: list[T] = []
    for record in records:
        try:
            if not isinstance(record, dict):
                raise ValueError(f"expected a mapping, got {type(record).__name__}")
            parsed.append(factory(record))
        except (AmountError, ValueError) as e:
            logger.warning(f"{kind}_record_skipped", extra={
                "record_id": str(record.get("_id")) if isinstance(record, dict) else None,
                "error": str(e),
            })
    return parsed


# =============================================================================
# Session drafts (mutable)
# =============================================================================


@dataclass
class PaymentDraft:
    """User-editable overrides for one selected invoice."""
    invoice_id: str
    original_discount: Decimal
    discount: Decimal
    amount: Decimal
    description: str = ""

    @classmethod
    def for_invoice(cls, invoice: Invoice) -> PaymentDraft:
        return cls(
            invoice_id=invoice.id,
            original_discount=invoice.discount,
            discount=invoice.discount,
            amount=non_negative(invoice.balance_to_receive),
        )

    def amount_ceiling(self, invoice: Invoice, discount: Decimal | None = None) -> Decimal:
        """
        Largest payable amount for this invoice at ``discount`` (default: current).

        Lowering the discount below its original value frees exactly that
        much extra payable balance; raising it shrinks the ceiling by the
        same delta.
        """
        if discount is None:
            discount = self.discount
        return non_negative(
            invoice.balance_to_receive + (self.original_discount - discount)
        )


@dataclass(frozen=True)
class InvoiceBalances:
    """Per-invoice figures derived from an invoice and its current draft."""
    final_amount: Decimal  # total - discount
    total_paid: Decimal  # already paid + this payment
    balance_to_pay: Decimal  # what would still be owed after this payment
    amount_ceiling: Decimal


@dataclass
class CreditNoteDeduction:
    """How much of one attached credit note this settlement consumes."""
    credit_note_id: str
    credit_note_number: str
    remaining_balance: Decimal
    amount: Decimal | None = None  # None while the field is blank


@dataclass
class CustomerBalanceState:
    """The customer's stored credit and how much of it to apply."""
    customer_id: str | None = None
    stored_balance: Decimal = ZERO
    balance_contribution: Any = ZERO  # raw user input; engines coerce it
    use_balance: bool = False

    @classmethod
    def for_customer(cls, customer: Customer | None) -> CustomerBalanceState:
        if customer is None:
            return cls()
        return cls(customer_id=customer.id, stored_balance=customer.balance)


# =============================================================================
# Edit outcomes
# =============================================================================


class EditStatus(Enum):
    """What happened to a user edit."""
    APPLIED = "applied"  # stored as given
    CLAMPED = "clamped"  # stored after clamping into range
    REJECTED = "rejected"  # left unchanged


@dataclass(frozen=True)
class EditResult:
    """Outcome of a user edit.  Validation problems surface here, not as exceptions."""
    status: EditStatus
    value: Any = None
    code: str | None = None
    message: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status is not EditStatus.REJECTED

    @classmethod
    def applied(cls, value: Any) -> EditResult:
        return cls(EditStatus.APPLIED, value)

    @classmethod
    def clamped(cls, value: Any, message: str) -> EditResult:
        return cls(EditStatus.CLAMPED, value, None, message)

    @classmethod
    def rejected(cls, code: str, message: str, value: Any = None) -> EditResult:
        return cls(EditStatus.REJECTED, value, code, message)
