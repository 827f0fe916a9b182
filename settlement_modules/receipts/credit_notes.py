"""
Credit-note deduction tracker (``settlement_modules.receipts.credit_notes``).

Responsibility
--------------
Finds a customer's standalone credit notes that still have money left and
tracks how much of each attached note this settlement consumes.

Architecture position
---------------------
**Modules layer**.  Talks to the outside world only through the injected
``PaymentServiceGateway``; everything else is in-memory.

Invariants enforced
-------------------
* At most one deduction per credit note id; attaching twice is a no-op.
* A stored amount is never negative and never above the note's remaining
  balance.  Blank (None) and zero are allowed while the user types; the
  submission builder rejects them.
* Notes attached together share one headroom figure, so a batch never
  claims more than the payments total.

Failure modes
-------------
* Search failures degrade to an empty list (logged at WARNING).
* Invalid ``set_amount`` input is reported via ``EditResult``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from decimal import Decimal
from typing import Any

from settlement_config.schema import SearchSettings
from settlement_kernel.domain.amounts import ZERO, non_negative, parse_optional_amount, round_money
from settlement_kernel.exceptions import (
    AmountError,
    CreditNoteAmountExceededError,
    CreditNoteError,
    CreditNoteNotAttachedError,
    ExternalServiceError,
    NegativeCreditNoteAmountError,
)
from settlement_kernel.logging_config import get_logger
from settlement_modules.receipts.events import ChangeNotifier
from settlement_modules.receipts.models import (
    CreditNote,
    CreditNoteDeduction,
    EditResult,
    parse_records,
)
from settlement_services.gateway import CreditNoteFilter, PaymentServiceGateway

logger = get_logger("modules.receipts.credit_notes")

_DEFAULT_SEARCH = SearchSettings(quiet_period_ms=500, min_term_length=1)


class CreditNoteDeductionTracker(ChangeNotifier):
    """Attached credit notes for one session, keyed by credit note id."""

    _source = "credit_notes"

    def __init__(
        self,
        gateway: PaymentServiceGateway | None = None,
        search_settings: SearchSettings | None = None,
    ) -> None:
        super().__init__()
        self._gateway = gateway
        self._search_settings = search_settings or _DEFAULT_SEARCH
        self._deductions: dict[str, CreditNoteDeduction] = {}

    # =========================================================================
    # Search
    # =========================================================================

    def search(self, customer_id: str | None, term: str) -> list[CreditNote]:
        """
        Standalone credit notes with a remaining balance matching ``term``.

        Short terms return nothing without touching the service.
        """
        term = (term or "").strip()
        if len(term) < self._search_settings.min_term_length or self._gateway is None:
            return []

        filters = CreditNoteFilter(customer_id=customer_id)
        try:
            records = self._gateway.search_credit_notes(
                term, filters, limit=self._search_settings.page_size,
            )
        except ExternalServiceError as e:
            logger.warning("credit_note_search_failed", extra={
                "customer_id": customer_id,
                "term": term,
                "error_code": e.code,
                "detail": e.detail,
            })
            return []

        return parse_records(
            records[: self._search_settings.page_size], CreditNote.from_record, "credit_note",
        )

    # =========================================================================
    # Attach / detach
    # =========================================================================

    def attach(self, note: CreditNote, payments_total: Decimal) -> CreditNoteDeduction:
        """Attach one note with a suggested amount; no-op if already attached."""
        return self.attach_many([note], payments_total)[0]

    def attach_many(
        self,
        notes: Iterable[CreditNote],
        payments_total: Decimal,
    ) -> list[CreditNoteDeduction]:
        """
        Attach several notes in order.

        Each new note is suggested ``min(remaining_balance, headroom)`` where
        headroom starts at ``payments_total - total`` and shrinks by every
        suggestion in the batch.  A zero suggestion leaves the amount blank.
        """
        headroom = non_negative(round_money(payments_total) - self.total)
        attached: list[CreditNoteDeduction] = []
        new_ids: list[str] = []

        for note in notes:
            existing = self._deductions.get(note.id)
            if existing is not None:
                attached.append(existing)
                continue

            suggested = min(non_negative(note.remaining_balance), headroom)
            headroom = non_negative(headroom - suggested)
            deduction = CreditNoteDeduction(
                credit_note_id=note.id,
                credit_note_number=note.credit_note_number,
                remaining_balance=note.remaining_balance,
                amount=suggested if suggested > ZERO else None,
            )
            self._deductions[note.id] = deduction
            attached.append(deduction)
            new_ids.append(note.id)
            logger.info("credit_note_attached", extra={
                "credit_note_id": note.id,
                "credit_note_number": note.credit_note_number,
                "remaining_balance": str(note.remaining_balance),
                "suggested_amount": str(suggested),
            })

        self._emit("attach", *new_ids)
        return attached

    def detach(self, credit_note_id: str) -> bool:
        removed = self._deductions.pop(credit_note_id, None) is not None
        if removed:
            logger.info("credit_note_detached", extra={"credit_note_id": credit_note_id})
        self._emit("detach", credit_note_id)
        return removed

    def clear(self) -> None:
        ids = tuple(self._deductions)
        self._deductions.clear()
        self._emit("clear", *ids)

    # =========================================================================
    # Edits
    # =========================================================================

    def set_amount(self, credit_note_id: str, value: Any) -> EditResult:
        """
        Store the user's deduction for one note.

        Blank input is kept as None.  Non-numeric, negative or over-balance
        input is rejected and the previous amount kept.
        """
        try:
            amount = self._checked_amount(credit_note_id, value)
        except (AmountError, CreditNoteError) as e:
            logger.warning("credit_note_amount_rejected", extra={
                "credit_note_id": credit_note_id,
                "code": e.code,
            })
            result = EditResult.rejected(
                e.code,
                str(e),
                value=self._deductions[credit_note_id].amount
                if credit_note_id in self._deductions else None,
            )
        else:
            self._deductions[credit_note_id].amount = amount
            result = EditResult.applied(amount)
        self._emit("edit", credit_note_id)
        return result

    def _checked_amount(self, credit_note_id: str, value: Any) -> Decimal | None:
        deduction = self.deduction(credit_note_id)
        amount = parse_optional_amount(value)
        if amount is None:
            return None
        if amount < ZERO:
            raise NegativeCreditNoteAmountError(credit_note_id, amount)
        if amount > deduction.remaining_balance:
            raise CreditNoteAmountExceededError(
                credit_note_id, amount, deduction.remaining_balance,
            )
        return amount

    # =========================================================================
    # Queries
    # =========================================================================

    def deduction(self, credit_note_id: str) -> CreditNoteDeduction:
        try:
            return self._deductions[credit_note_id]
        except KeyError:
            raise CreditNoteNotAttachedError(credit_note_id) from None

    def deductions(self) -> tuple[CreditNoteDeduction, ...]:
        return tuple(self._deductions.values())

    @property
    def total(self) -> Decimal:
        """Sum of the entered amounts; blanks count as zero."""
        return round_money(sum(
            (d.amount for d in self._deductions.values() if d.amount is not None),
            ZERO,
        ))

    def __len__(self) -> int:
        return len(self._deductions)

    def __contains__(self, credit_note_id: object) -> bool:
        return credit_note_id in self._deductions

    def __iter__(self) -> Iterator[CreditNoteDeduction]:
        return iter(self.deductions())
