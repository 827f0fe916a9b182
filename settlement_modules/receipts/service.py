"""
Receipts Module Service - one payment session over engines + gateway.

Thin glue layer that:
1. Owns the InvoiceSelectionSet, CreditNoteDeductionTracker, customer
   balance state and cash-field state for one settlement
2. Calls AllocationCalculator after every mutation (synchronously, from
   scratch) and keeps the latest AllocationResult
3. Runs debounced customer and credit-note searches through the gateway
4. Hands the finished session to SubmissionBuilder

All computation lives in engines. The single external write lives in the
submission builder. Nothing is persisted until that one call succeeds, so
close() only has to drop in-memory state.

Usage:
    session = PaymentSession(gateway, settings=get_active_config())
    session.set_customer(customer)
    session.select_invoices(invoices)
    session.set_use_balance(True)
    session.set_balance_contribution("200")
    session.set_payment_date(date.today())
    outcome = session.submit()
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import uuid4

from settlement_config.schema import SettlementSettings
from settlement_engines.allocation import AllocationResult, compute_allocation
from settlement_engines.cash_field import CashFieldEvent, CashFieldState
from settlement_kernel.domain.amounts import ZERO, parse_optional_amount
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    AmountError,
    BalanceError,
    BalanceNotInUseError,
    CashFieldError,
    ExternalServiceError,
    SessionClosedError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_modules.receipts.credit_notes import CreditNoteDeductionTracker
from settlement_modules.receipts.events import ChangeEvent
from settlement_modules.receipts.models import (
    BankAccount,
    CreditNote,
    CreditNoteDeduction,
    Customer,
    CustomerBalanceState,
    EditResult,
    Invoice,
    InvoiceBalances,
    PaymentDraft,
    parse_records,
)
from settlement_modules.receipts.selection import DraftField, InvoiceSelectionSet
from settlement_modules.receipts.submission import (
    SubmissionBuilder,
    SubmissionContext,
    SubmissionOutcome,
    ValidationResult,
)
from settlement_services.gateway import PaymentServiceGateway
from settlement_services.search import DebouncedSearch

logger = get_logger("modules.receipts.service")


class PaymentSession:
    """
    One customer, one invoice batch, one settlement.

    Sessions share no mutable state; each owns its own selection set,
    tracker, calculator inputs and submit guard.  Every mutating call
    leaves ``allocation`` fully recomputed before it returns.
    """

    def __init__(
        self,
        gateway: PaymentServiceGateway | None = None,
        settings: SettlementSettings | None = None,
        clock: Clock | None = None,
        session_id: str | None = None,
    ):
        self.session_id = session_id or str(uuid4())
        self._gateway = gateway
        self._settings = settings or SettlementSettings.with_defaults()
        self._clock = clock or SystemClock()

        self._selection = InvoiceSelectionSet()
        self._credit_notes = CreditNoteDeductionTracker(
            gateway, self._settings.credit_note_search,
        )
        self._customer: Customer | None = None
        self._balance = CustomerBalanceState()
        self._cash = CashFieldState.auto()
        self._builder = SubmissionBuilder(gateway)

        self._bank_accounts: tuple[BankAccount, ...] = ()
        self._bank_account_id: str | None = None
        self._payment_date: date | None = None
        self._global_description = ""
        self._closed = False

        self._customer_search: DebouncedSearch[Customer] = DebouncedSearch(
            self._fetch_customers,
            quiet_period_ms=self._settings.customer_search.quiet_period_ms,
            min_term_length=self._settings.customer_search.min_term_length,
            clock=self._clock,
            name="customers",
        )
        self._credit_note_search: DebouncedSearch[CreditNote] = DebouncedSearch(
            self._fetch_credit_notes,
            quiet_period_ms=self._settings.credit_note_search.quiet_period_ms,
            min_term_length=self._settings.credit_note_search.min_term_length,
            clock=self._clock,
            name="credit_notes",
        )

        self._unsubscribe = [
            self._selection.subscribe(self._on_change),
            self._credit_notes.subscribe(self._on_change),
        ]
        self._allocation = self._compute()

        with self.log_context():
            logger.info("payment_session_opened", extra={"currency": self._settings.currency})

    # =========================================================================
    # State
    # =========================================================================

    @property
    def allocation(self) -> AllocationResult:
        return self._allocation

    @property
    def selection(self) -> InvoiceSelectionSet:
        return self._selection

    @property
    def credit_notes(self) -> CreditNoteDeductionTracker:
        return self._credit_notes

    @property
    def balance(self) -> CustomerBalanceState:
        return self._balance

    @property
    def cash(self) -> CashFieldState:
        return self._cash

    @property
    def customer(self) -> Customer | None:
        return self._customer

    @property
    def customer_id(self) -> str | None:
        return self._customer.id if self._customer else None

    @property
    def currency(self) -> str:
        return self._settings.currency

    @property
    def bank_accounts(self) -> tuple[BankAccount, ...]:
        return self._bank_accounts

    @property
    def bank_account_id(self) -> str | None:
        return self._bank_account_id

    @property
    def payment_date(self) -> date | None:
        return self._payment_date

    @property
    def global_description(self) -> str:
        return self._global_description

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def can_submit(self) -> bool:
        return not self._closed and self._builder.can_submit

    @property
    def submitting(self) -> bool:
        return self._builder.in_flight

    @property
    def customer_search(self) -> DebouncedSearch[Customer]:
        return self._customer_search

    @property
    def credit_note_search(self) -> DebouncedSearch[CreditNote]:
        return self._credit_note_search

    def log_context(self):
        """Bind this session's ids onto every log record inside the block."""
        return LogContext.bind(session_id=self.session_id, customer_id=self.customer_id)

    # =========================================================================
    # Recompute
    # =========================================================================

    def _compute(self) -> AllocationResult:
        return compute_allocation(
            self._selection.drafts(),
            self._balance,
            self._credit_notes.deductions(),
            self._cash,
        )

    def _refresh(self, event: CashFieldEvent = CashFieldEvent.UPSTREAM_CHANGED) -> None:
        self._cash = self._cash.transition(event)
        self._allocation = self._compute()
        self._reclamp_contribution()

    def _reclamp_contribution(self) -> None:
        """Keep the stored contribution inside [0, safe_max_balance_usage]."""
        if not self._balance.use_balance:
            return
        applied = self._allocation.clamped_balance_deduction
        if self._balance.balance_contribution != applied:
            logger.debug("balance_contribution_reclamped", extra={
                "requested": self._balance.balance_contribution,
                "applied": applied,
            })
            # The calculator already applied ``applied``; the result is unchanged.
            self._balance.balance_contribution = applied

    def _on_change(self, event: ChangeEvent) -> None:
        self._refresh()

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(self.session_id)

    # =========================================================================
    # Customer
    # =========================================================================

    def set_customer(self, customer: Customer | None) -> None:
        """
        Switch the paying customer.

        Seeds the balance state from the customer's stored balance and drops
        credit notes attached for the previous customer.
        """
        self._ensure_open()
        previous = self.customer_id
        self._customer = customer
        self._balance = CustomerBalanceState.for_customer(customer)
        if previous != self.customer_id and len(self._credit_notes):
            self._credit_notes.clear()
        self._refresh()
        with self.log_context():
            logger.info("payment_session_customer_set", extra={
                "previous_customer_id": previous,
                "stored_balance": str(self._balance.stored_balance),
            })

    def search_customers(self, term: str) -> list[Customer]:
        """Immediate (non-debounced) customer lookup."""
        self._ensure_open()
        term = (term or "").strip()
        if len(term) < self._settings.customer_search.min_term_length:
            return []
        try:
            return self._fetch_customers(term)
        except ExternalServiceError as e:
            logger.warning("customer_search_failed", extra={
                "error_code": e.code,
                "detail": e.detail,
            })
            return []

    def _fetch_customers(self, term: str) -> list[Customer]:
        if self._gateway is None:
            return []
        records = self._gateway.search_customers(
            term, limit=self._settings.customer_search.page_size,
        )
        return parse_records(records, Customer.from_record, "customer")

    # =========================================================================
    # Invoices
    # =========================================================================

    def select_invoice(self, invoice: Invoice) -> PaymentDraft:
        self._ensure_open()
        return self._selection.select(invoice)

    def select_invoices(self, invoices: Iterable[Invoice]) -> list[PaymentDraft]:
        self._ensure_open()
        return self._selection.select_all(invoices)

    def deselect_invoice(self, invoice_id: str) -> bool:
        self._ensure_open()
        return self._selection.deselect(invoice_id)

    def clear_invoices(self) -> None:
        self._ensure_open()
        self._selection.clear_all()

    def set_draft_field(
        self,
        invoice_id: str,
        field: DraftField | str,
        value: Any,
    ) -> EditResult:
        self._ensure_open()
        return self._selection.set_draft_field(invoice_id, field, value)

    def invoice_balances(self, invoice_id: str) -> InvoiceBalances:
        return self._selection.balances(invoice_id)

    # =========================================================================
    # Customer balance
    # =========================================================================

    def set_use_balance(self, use_balance: bool) -> None:
        """Toggle balance use.  Turning it off zeroes the contribution."""
        self._ensure_open()
        self._balance.use_balance = bool(use_balance)
        if not self._balance.use_balance:
            self._balance.balance_contribution = ZERO
        self._refresh()

    def set_balance_contribution(self, value: Any) -> EditResult:
        """
        Store how much stored balance to apply.

        Blank means zero.  The value is clamped to [0, safe_max_balance_usage].
        While balance use is off the contribution stays zero and any positive
        amount is rejected.
        """
        self._ensure_open()
        try:
            requested = parse_optional_amount(value)
            if requested is None:
                requested = ZERO
            if not self._balance.use_balance and requested > ZERO:
                raise BalanceNotInUseError(self.customer_id, requested)
        except (AmountError, BalanceError) as e:
            result = EditResult.rejected(e.code, str(e), value=self._balance.balance_contribution)
            logger.warning("balance_contribution_rejected", extra={"result": result})
            return result

        ceiling = self._allocation.safe_max_balance_usage if self._balance.use_balance else ZERO
        stored = min(max(requested, ZERO), ceiling)
        self._balance.balance_contribution = stored
        self._refresh()

        if stored != requested:
            result = EditResult.clamped(
                stored,
                f"Balance deduction must be between 0 and {ceiling}",
            )
            logger.info("balance_contribution_clamped", extra={"result": result})
            return result
        return EditResult.applied(stored)

    def use_full_balance(self) -> Decimal:
        """Apply as much stored balance as the invoices allow and re-autofill cash."""
        self._ensure_open()
        self._balance.use_balance = True
        self._balance.balance_contribution = self._allocation.safe_max_balance_usage
        self._refresh(CashFieldEvent.RESET)
        logger.info("payment_session_full_balance_applied", extra={
            "balance_deduction": str(self._allocation.clamped_balance_deduction),
        })
        return self._allocation.clamped_balance_deduction

    # =========================================================================
    # Cash received
    # =========================================================================

    def set_received_amount(self, value: Any) -> EditResult:
        """User typed into the cash field.  Blank returns it to auto-fill."""
        self._ensure_open()
        try:
            self._cash = self._cash.user_input(value)
        except (AmountError, CashFieldError) as e:
            return EditResult.rejected(e.code, str(e), value=self._allocation.received_amount)
        self._allocation = self._compute()
        return EditResult.applied(self._allocation.received_amount)

    def reset_received_amount(self) -> Decimal:
        self._ensure_open()
        self._refresh(CashFieldEvent.RESET)
        return self._allocation.received_amount

    def clear_received_amount(self) -> Decimal:
        self._ensure_open()
        self._refresh(CashFieldEvent.USER_CLEAR)
        return self._allocation.received_amount

    # =========================================================================
    # Credit notes
    # =========================================================================

    def search_credit_notes(self, term: str) -> list[CreditNote]:
        """Immediate (non-debounced) credit-note lookup for the current customer."""
        self._ensure_open()
        return self._credit_notes.search(self.customer_id, term)

    def _fetch_credit_notes(self, term: str) -> list[CreditNote]:
        return self._credit_notes.search(self.customer_id, term)

    def attach_credit_note(self, note: CreditNote) -> CreditNoteDeduction:
        self._ensure_open()
        return self._credit_notes.attach(note, self._allocation.payments_total)

    def attach_credit_notes(self, notes: Iterable[CreditNote]) -> list[CreditNoteDeduction]:
        self._ensure_open()
        return self._credit_notes.attach_many(notes, self._allocation.payments_total)

    def detach_credit_note(self, credit_note_id: str) -> bool:
        self._ensure_open()
        return self._credit_notes.detach(credit_note_id)

    def set_credit_note_amount(self, credit_note_id: str, value: Any) -> EditResult:
        self._ensure_open()
        return self._credit_notes.set_amount(credit_note_id, value)

    # =========================================================================
    # Bank account, date, description
    # =========================================================================

    def load_bank_accounts(self) -> tuple[BankAccount, ...]:
        """List bank accounts; preselects the first one when configured."""
        self._ensure_open()
        if self._gateway is None:
            return self._bank_accounts
        try:
            records = self._gateway.list_bank_accounts()
        except ExternalServiceError as e:
            logger.warning("bank_accounts_load_failed", extra={
                "error_code": e.code,
                "detail": e.detail,
            })
            self._bank_accounts = ()
            return self._bank_accounts

        self._bank_accounts = tuple(parse_records(records, BankAccount.from_record, "bank_account"))
        if (
            self._bank_account_id is None
            and self._settings.default_first_bank_account
            and self._bank_accounts
        ):
            self._bank_account_id = self._bank_accounts[0].id
        return self._bank_accounts

    def set_bank_account(self, bank_account_id: str | None) -> None:
        self._ensure_open()
        self._bank_account_id = bank_account_id or None

    def set_payment_date(self, payment_date: date | str | None) -> None:
        self._ensure_open()
        if isinstance(payment_date, str):
            payment_date = date.fromisoformat(payment_date) if payment_date.strip() else None
        self._payment_date = payment_date

    def set_global_description(self, description: str | None) -> None:
        self._ensure_open()
        self._global_description = description or ""

    # =========================================================================
    # Submission
    # =========================================================================

    def _context(self) -> SubmissionContext:
        return SubmissionContext(
            bank_account_id=self._bank_account_id,
            payment_date=self._payment_date,
            global_description=self._global_description,
            customer_id=self.customer_id,
        )

    def validate(self) -> ValidationResult:
        self._ensure_open()
        return self._builder.validate(
            selection=self._selection,
            deductions=self._credit_notes.deductions(),
            allocation=self._allocation,
            context=self._context(),
        )

    def submit(self) -> SubmissionOutcome:
        """Send the settlement.  Session state is left untouched on failure."""
        self._ensure_open()
        with self.log_context():
            return self._builder.submit(
                selection=self._selection,
                deductions=self._credit_notes.deductions(),
                balance=self._balance,
                cash=self._cash,
                allocation=self._allocation,
                context=self._context(),
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Abandon the session; all in-memory state is discarded."""
        if self._closed:
            return
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._selection.clear_all()
        self._credit_notes.clear()
        self._closed = True
        with self.log_context():
            logger.info("payment_session_closed", extra={
                "submitted": self._builder.completed,
            })

    def __enter__(self) -> PaymentSession:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
