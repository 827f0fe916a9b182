"""
Tests for SubmissionBuilder.

Covers:
- Each pre-submit rule, in order
- Request payload shape and rounding
- Contract checks (stale allocation, negative amounts)
- Exactly-once submission and the in-flight guard
- Service rejection and service errors
"""

import threading
from datetime import date
from decimal import Decimal

import pytest

from settlement_engines.allocation import compute_allocation
from settlement_engines.cash_field import CashFieldState
from settlement_kernel.exceptions import SubmissionContractError, SubmissionValidationError
from settlement_modules.receipts.credit_notes import CreditNoteDeductionTracker
from settlement_modules.receipts.models import CustomerBalanceState
from settlement_modules.receipts.selection import InvoiceSelectionSet
from settlement_modules.receipts.submission import (
    PaymentServiceResponse,
    SubmissionBuilder,
    SubmissionContext,
    SubmissionStatus,
    ValidationFailure,
)


class _Session:
    """Minimal bundle of the builder's inputs."""

    def __init__(self):
        self.selection = InvoiceSelectionSet()
        self.tracker = CreditNoteDeductionTracker()
        self.balance = CustomerBalanceState(customer_id="cust-1", stored_balance=Decimal("200"))
        self.cash = CashFieldState.auto()
        self.context = SubmissionContext(
            bank_account_id="bank-1",
            payment_date=date(2024, 3, 15),
            global_description="March receipts",
            customer_id="cust-1",
        )

    @property
    def allocation(self):
        return compute_allocation(
            self.selection.drafts(), self.balance, self.tracker.deductions(), self.cash,
        )

    def kwargs(self, **overrides):
        values = dict(
            selection=self.selection,
            deductions=self.tracker.deductions(),
            balance=self.balance,
            cash=self.cash,
            allocation=self.allocation,
            context=self.context,
        )
        values.update(overrides)
        return values

    def validate_kwargs(self, **overrides):
        values = self.kwargs(**overrides)
        values.pop("balance")
        values.pop("cash")
        return values


@pytest.fixture
def session(make_invoice):
    s = _Session()
    s.invoice = make_invoice(total="500", invoice_id="inv-1")
    s.selection.select(s.invoice)
    return s


class TestValidationRules:
    """Rules are evaluated in order; first failure wins."""

    def setup_method(self):
        self.builder = SubmissionBuilder()

    def test_valid_session(self, session):
        result = self.builder.validate(**session.validate_kwargs())
        assert result.is_valid
        assert result.failure is None

    def test_no_invoices(self, session):
        session.selection.clear_all()
        result = self.builder.validate(**session.validate_kwargs(
            context=SubmissionContext(),
        ))
        assert result.failure is ValidationFailure.NO_INVOICES

    def test_bank_account_required_when_cash_needed(self, session):
        result = self.builder.validate(**session.validate_kwargs(
            context=SubmissionContext(payment_date=date(2024, 3, 15)),
        ))
        assert result.failure is ValidationFailure.BANK_ACCOUNT_REQUIRED

    def test_bank_account_not_required_without_cash(self, session, make_credit_note):
        session.tracker.attach(make_credit_note("500"), session.selection.payments_total)
        result = self.builder.validate(**session.validate_kwargs(
            context=SubmissionContext(payment_date=date(2024, 3, 15)),
        ))
        assert result.is_valid

    def test_payment_date_required(self, session):
        result = self.builder.validate(**session.validate_kwargs(
            context=SubmissionContext(bank_account_id="bank-1"),
        ))
        assert result.failure is ValidationFailure.PAYMENT_DATE_REQUIRED

    def test_coverage_mismatch(self, session):
        session.cash = CashFieldState.auto().user_input("400")
        result = self.builder.validate(**session.validate_kwargs())
        assert result.failure is ValidationFailure.COVERAGE_MISMATCH
        assert "100.00" in result.message

    def test_blank_credit_note_amount(self, session, make_credit_note):
        note = make_credit_note("100")
        session.tracker.attach(note, session.selection.payments_total)
        session.tracker.set_amount(note.id, "")
        result = self.builder.validate(**session.validate_kwargs())
        assert result.failure is ValidationFailure.INVALID_CREDIT_NOTE_AMOUNT

    def test_zero_credit_note_amount(self, session, make_credit_note):
        note = make_credit_note("100")
        session.tracker.attach(note, session.selection.payments_total)
        session.tracker.set_amount(note.id, "0")
        result = self.builder.validate(**session.validate_kwargs())
        assert result.failure is ValidationFailure.INVALID_CREDIT_NOTE_AMOUNT

    def test_credit_notes_exceed_payments(self, session, make_credit_note):
        note = make_credit_note("900")
        session.tracker.attach(note, session.selection.payments_total)
        session.tracker.set_amount(note.id, "600")
        result = self.builder.validate(**session.validate_kwargs())
        assert result.failure is ValidationFailure.CREDIT_NOTES_EXCEED_PAYMENTS

    def test_deductions_exceed_payments(self, session, make_credit_note):
        session.balance.use_balance = True
        session.balance.balance_contribution = Decimal("200")
        note = make_credit_note("400")
        session.tracker.attach(note, Decimal("1000"))
        result = self.builder.validate(**session.validate_kwargs())
        assert result.failure is ValidationFailure.DEDUCTIONS_EXCEED_PAYMENTS

    def test_customer_required_for_balance_deduction(self, session):
        session.balance.use_balance = True
        session.balance.balance_contribution = Decimal("100")
        result = self.builder.validate(**session.validate_kwargs(
            context=SubmissionContext(bank_account_id="bank-1", payment_date=date(2024, 3, 15)),
        ))
        assert result.failure is ValidationFailure.CUSTOMER_REQUIRED

    def test_first_failure_wins(self, session):
        session.cash = CashFieldState.auto().user_input("10")
        result = self.builder.validate(**session.validate_kwargs(context=SubmissionContext()))
        assert result.failure is ValidationFailure.BANK_ACCOUNT_REQUIRED


class TestBuild:
    """Request construction."""

    def setup_method(self):
        self.builder = SubmissionBuilder()

    def test_payload_shape(self, session, make_credit_note, make_invoice):
        second = make_invoice(total="300.333", invoice_id="inv-2")
        session.selection.select(second)
        session.selection.set_draft_field("inv-2", "description", "own text")
        session.selection.set_draft_field("inv-2", "discount", "10")
        note = make_credit_note("50", note_id="cn-9")
        session.tracker.attach(note, session.selection.payments_total)

        payload = self.builder.build(**session.kwargs()).to_payload()

        assert payload["customerId"] == "cust-1"
        assert payload["payments"][0] == {
            "invoiceId": "inv-1",
            "discount": Decimal("0.00"),
            "amount": Decimal("500.00"),
            "bankAccount": "bank-1",
            "date": "2024-03-15",
            "description": "March receipts",
        }
        assert payload["payments"][1]["description"] == "own text"
        assert payload["payments"][1]["discount"] == Decimal("10.00")
        assert payload["payments"][1]["amount"] == Decimal("290.33")
        assert payload["creditNoteDeductions"] == [
            {"_id": "cn-9", "amount": Decimal("50.00"), "creditNoteNumber": note.credit_note_number},
        ]
        assert payload["receivedAmount"] == Decimal("740.33")
        assert payload["balanceDeductionAmount"] == Decimal("0.00")
        assert payload["deductFromCustomerBalance"] is False
        assert payload["excessAmount"] == Decimal("0.00")

    def test_balance_deduction_flag(self, session):
        session.balance.use_balance = True
        session.balance.balance_contribution = "150"

        request = self.builder.build(**session.kwargs())

        assert request.deduct_from_customer_balance is True
        assert request.balance_deduction_amount == Decimal("150.00")
        assert request.received_amount == Decimal("350.00")

    def test_blank_line_description_falls_back_to_global(self, session):
        session.selection.set_draft_field("inv-1", "description", "   ")
        request = self.builder.build(**session.kwargs())
        assert request.payments[0].description == "March receipts"

    def test_invalid_session_raises(self, session):
        session.cash = CashFieldState.auto().user_input("1")
        with pytest.raises(SubmissionValidationError) as exc_info:
            self.builder.build(**session.kwargs())
        assert exc_info.value.failure == "coverage_mismatch"

    def test_stale_allocation_is_a_contract_error(self, session):
        stale = session.allocation
        session.selection.set_draft_field("inv-1", "amount", "250")
        session.cash = CashFieldState.auto().user_input("500")
        with pytest.raises(SubmissionContractError):
            self.builder.build(**session.kwargs(allocation=stale))

    def test_negative_draft_is_a_contract_error(self, session):
        session.selection.draft("inv-1").discount = Decimal("-1")
        with pytest.raises(SubmissionContractError):
            self.builder.build(**session.kwargs())


class TestSubmit:
    """Exactly-once submission."""

    def test_success(self, session, gateway, captured_logs):
        builder = SubmissionBuilder(gateway)

        outcome = builder.submit(**session.kwargs())

        assert outcome.status is SubmissionStatus.SUBMITTED
        assert outcome.succeeded
        assert len(gateway.submitted) == 1
        assert gateway.submitted[0]["receivedAmount"] == Decimal("500.00")
        assert builder.completed
        assert not builder.can_submit
        assert any(r["message"] == "payment_submitted" for r in captured_logs())

    def test_second_submit_refused(self, session, gateway):
        builder = SubmissionBuilder(gateway)
        builder.submit(**session.kwargs())

        outcome = builder.submit(**session.kwargs())

        assert outcome.status is SubmissionStatus.ALREADY_SUBMITTED
        assert len(gateway.submitted) == 1

    def test_validation_failure_does_not_call_service(self, session, gateway):
        builder = SubmissionBuilder(gateway)
        session.cash = CashFieldState.auto().user_input("1")

        outcome = builder.submit(**session.kwargs())

        assert outcome.status is SubmissionStatus.VALIDATION_FAILED
        assert outcome.failure is ValidationFailure.COVERAGE_MISMATCH
        assert gateway.submitted == []
        assert builder.can_submit

    def test_contract_error_propagates_without_call(self, session, gateway):
        builder = SubmissionBuilder(gateway)
        stale = session.allocation
        session.selection.set_draft_field("inv-1", "amount", "250")
        session.cash = CashFieldState.auto().user_input("500")

        with pytest.raises(SubmissionContractError):
            builder.submit(**session.kwargs(allocation=stale))
        assert gateway.submitted == []
        assert not builder.in_flight

    def test_service_rejection_allows_retry(self, session, gateway):
        builder = SubmissionBuilder(gateway)
        gateway.submit_response = {"success": False, "message": "Invoice locked"}

        outcome = builder.submit(**session.kwargs())

        assert outcome.status is SubmissionStatus.SERVICE_REJECTED
        assert outcome.message == "Invoice locked"
        assert outcome.retryable
        assert builder.can_submit

        gateway.submit_response = {"success": True, "message": "ok"}
        assert builder.submit(**session.kwargs()).succeeded
        assert len(gateway.submitted) == 2

    def test_service_error_allows_retry(self, session, gateway):
        builder = SubmissionBuilder(gateway)
        gateway.fail_submit_payment = True

        outcome = builder.submit(**session.kwargs())

        assert outcome.status is SubmissionStatus.SERVICE_ERROR
        assert outcome.request is not None
        assert builder.can_submit
        assert session.selection.draft("inv-1").amount == Decimal("500.00")

    def test_concurrent_submit_refused_while_in_flight(self, session, gateway):
        builder = SubmissionBuilder(gateway)
        entered = threading.Event()
        release = threading.Event()
        outcomes = {}

        def _block(request):
            entered.set()
            release.wait(timeout=5)

        gateway.on_submit = _block

        worker = threading.Thread(
            target=lambda: outcomes.setdefault("first", builder.submit(**session.kwargs())),
        )
        worker.start()
        assert entered.wait(timeout=5)

        assert builder.in_flight
        assert not builder.can_submit
        second = builder.submit(**session.kwargs())

        release.set()
        worker.join(timeout=5)

        assert second.status is SubmissionStatus.IN_FLIGHT
        assert outcomes["first"].status is SubmissionStatus.SUBMITTED
        assert len(gateway.submitted) == 1

    def test_no_gateway_is_a_contract_error(self, session):
        with pytest.raises(SubmissionContractError):
            SubmissionBuilder().submit(**session.kwargs())


class TestPaymentServiceResponse:
    """Parsing the service's answer."""

    def test_with_customer(self):
        response = PaymentServiceResponse.from_record({
            "success": True,
            "message": "done",
            "customer": {"_id": "cust-1", "name": "Acme", "balance": 275.5},
        })
        assert response.success
        assert response.customer.balance == Decimal("275.50")

    def test_minimal(self):
        response = PaymentServiceResponse.from_record({"success": False})
        assert not response.success
        assert response.message == ""
        assert response.customer is None
