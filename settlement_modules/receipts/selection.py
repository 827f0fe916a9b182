"""
Invoice selection set (``settlement_modules.receipts.selection``).

Responsibility
--------------
Holds the invoices the user has chosen to pay, each with a mutable
``PaymentDraft`` (discount, amount, description), and enforces the
per-invoice ranges on every edit.

Architecture position
---------------------
**Modules layer** -- in-memory state machine, no I/O.  Every call emits a
``ChangeEvent`` so the session can recompute the allocation synchronously.

Invariants enforced
-------------------
* 0 <= draft.discount <= invoice.total_amount.
* 0 <= draft.amount <= max(0, balance_to_receive + (original_discount - discount)).
* Drafts are keyed by invoice id in insertion order; deselecting and
  reselecting an invoice creates a fresh draft at the end.

Failure modes
-------------
* Type-invalid edit values are rejected (draft unchanged) and reported
  through ``EditResult``; nothing is raised to the caller.
* ``balances`` / ``draft`` raise ``InvoiceNotSelectedError`` for unknown ids.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from decimal import Decimal
from enum import Enum
from typing import Any

from settlement_kernel.domain.amounts import ZERO, clamp, non_negative, parse_optional_amount, round_money
from settlement_kernel.exceptions import (
    AmountError,
    InvoiceNotSelectedError,
    SelectionError,
    UnknownDraftFieldError,
)
from settlement_kernel.logging_config import get_logger
from settlement_modules.receipts.events import ChangeNotifier
from settlement_modules.receipts.models import (
    EditResult,
    Invoice,
    InvoiceBalances,
    PaymentDraft,
)

logger = get_logger("modules.receipts.selection")


class DraftField(str, Enum):
    """Editable fields of a PaymentDraft."""
    DESCRIPTION = "description"
    DISCOUNT = "discount"
    AMOUNT = "amount"


def _coerce_field(field: DraftField | str) -> DraftField:
    try:
        return DraftField(field)
    except ValueError as e:
        raise UnknownDraftFieldError(field) from e


def _blank_is_zero(value: Any) -> Decimal:
    """Number inputs the user emptied count as zero."""
    parsed = parse_optional_amount(value)
    return ZERO if parsed is None else parsed


class InvoiceSelectionSet(ChangeNotifier):
    """
    Working set of invoices being paid in one session.

    Contract:
        Invoices and drafts are stored in two id-keyed dicts (the draft
        never holds a reference to the invoice object), so reselecting an
        invoice can never alias a stale draft.
    """

    _source = "selection"

    def __init__(self) -> None:
        super().__init__()
        self._invoices: dict[str, Invoice] = {}
        self._drafts: dict[str, PaymentDraft] = {}

    # =========================================================================
    # Selection
    # =========================================================================

    def select(self, invoice: Invoice) -> PaymentDraft:
        """Select ``invoice``; already-selected invoices keep their draft."""
        if not isinstance(invoice, Invoice):
            raise TypeError(f"select() expects an Invoice, got {type(invoice).__name__}")

        draft = self._select_one(invoice)
        self._emit("select", invoice.id)
        return draft

    def select_all(self, invoices: Iterable[Invoice]) -> list[PaymentDraft]:
        """Select every invoice in ``invoices`` with the same semantics as ``select``."""
        invoices = list(invoices)
        for invoice in invoices:
            if not isinstance(invoice, Invoice):
                raise TypeError(
                    f"select_all() expects Invoices, got {type(invoice).__name__}"
                )
        drafts = [self._select_one(invoice) for invoice in invoices]
        self._emit("select_all", *(invoice.id for invoice in invoices))
        return drafts

    def deselect(self, invoice_id: str) -> bool:
        """Drop the draft for ``invoice_id``.  Returns False if it was not selected."""
        removed = self._drafts.pop(invoice_id, None) is not None
        self._invoices.pop(invoice_id, None)
        if removed:
            logger.info("invoice_deselected", extra={"invoice_id": invoice_id})
        self._emit("deselect", invoice_id)
        return removed

    def clear_all(self) -> None:
        ids = tuple(self._drafts)
        self._drafts.clear()
        self._invoices.clear()
        logger.info("selection_cleared", extra={"invoice_count": len(ids)})
        self._emit("clear_all", *ids)

    def _select_one(self, invoice: Invoice) -> PaymentDraft:
        existing = self._drafts.get(invoice.id)
        if existing is not None:
            return existing
        draft = PaymentDraft.for_invoice(invoice)
        self._invoices[invoice.id] = invoice
        self._drafts[invoice.id] = draft
        logger.info("invoice_selected", extra={
            "invoice_id": invoice.id,
            "balance_to_receive": str(invoice.balance_to_receive),
            "discount": str(invoice.discount),
        })
        return draft

    # =========================================================================
    # Draft edits
    # =========================================================================

    def set_draft_field(
        self,
        invoice_id: str,
        field: DraftField | str,
        value: Any,
    ) -> EditResult:
        """
        Edit one field of one draft.

        * description -- stored verbatim.
        * discount -- clamped to [0, total_amount]; the amount is then
          clamped down to the new ceiling if it exceeds it.
        * amount -- clamped to [0, current ceiling].
        """
        try:
            result = self._apply_edit(invoice_id, field, value)
        except (AmountError, SelectionError) as e:
            logger.warning("draft_edit_rejected", extra={
                "invoice_id": invoice_id,
                "field": str(field),
                "code": e.code,
            })
            result = EditResult.rejected(e.code, str(e))
        self._emit("edit", invoice_id)
        return result

    def _apply_edit(self, invoice_id: str, field: DraftField | str, value: Any) -> EditResult:
        field = _coerce_field(field)
        draft = self.draft(invoice_id)
        invoice = self._invoices[invoice_id]

        if field is DraftField.DESCRIPTION:
            if value is None:
                value = ""
            if not isinstance(value, str):
                return EditResult.rejected(
                    "INVALID_DESCRIPTION",
                    f"Description must be text, got {type(value).__name__}",
                )
            draft.description = value
            return EditResult.applied(value)

        requested = _blank_is_zero(value)

        if field is DraftField.DISCOUNT:
            discount = clamp(requested, ZERO, invoice.total_amount)
            draft.discount = discount
            ceiling = draft.amount_ceiling(invoice)
            if draft.amount > ceiling:
                logger.debug("draft_amount_clamped_by_discount", extra={
                    "invoice_id": invoice_id,
                    "amount": str(draft.amount),
                    "ceiling": str(ceiling),
                })
                draft.amount = ceiling
            if discount != requested:
                return EditResult.clamped(
                    discount,
                    f"Discount must be between 0 and {invoice.total_amount}",
                )
            return EditResult.applied(discount)

        ceiling = draft.amount_ceiling(invoice)
        amount = clamp(requested, ZERO, ceiling)
        draft.amount = amount
        if amount != requested:
            return EditResult.clamped(
                amount,
                f"Payment must be between 0 and {ceiling}",
            )
        return EditResult.applied(amount)

    # =========================================================================
    # Queries
    # =========================================================================

    def draft(self, invoice_id: str) -> PaymentDraft:
        try:
            return self._drafts[invoice_id]
        except KeyError:
            raise InvoiceNotSelectedError(invoice_id) from None

    def invoice(self, invoice_id: str) -> Invoice:
        try:
            return self._invoices[invoice_id]
        except KeyError:
            raise InvoiceNotSelectedError(invoice_id) from None

    def drafts(self) -> tuple[PaymentDraft, ...]:
        """Active drafts in selection order."""
        return tuple(self._drafts.values())

    def items(self) -> tuple[tuple[Invoice, PaymentDraft], ...]:
        return tuple((self._invoices[k], d) for k, d in self._drafts.items())

    @property
    def payments_total(self) -> Decimal:
        return round_money(sum((d.amount for d in self._drafts.values()), ZERO))

    def balances(self, invoice_id: str) -> InvoiceBalances:
        """Per-invoice figures for display, derived fresh from the draft."""
        draft = self.draft(invoice_id)
        invoice = self._invoices[invoice_id]
        ceiling = draft.amount_ceiling(invoice)
        return InvoiceBalances(
            final_amount=round_money(invoice.total_amount - draft.discount),
            total_paid=round_money(invoice.total_payed_amount + draft.amount),
            balance_to_pay=non_negative(ceiling - draft.amount),
            amount_ceiling=ceiling,
        )

    def __len__(self) -> int:
        return len(self._drafts)

    def __contains__(self, invoice_id: object) -> bool:
        return invoice_id in self._drafts

    def __iter__(self) -> Iterator[PaymentDraft]:
        return iter(self.drafts())
