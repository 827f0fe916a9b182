"""
Pytest fixtures for the settlement test suite.

Provides:
- Structured logging configured once per suite, plus ``captured_logs``
- A deterministic clock for debounce timing
- An in-memory payment service gateway
- Record and value-object factories
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Any

import pytest

from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.exceptions import ExternalServiceError
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_modules.receipts.models import CreditNote, Customer, Invoice
from settlement_services.gateway import CreditNoteFilter


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture settlement logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            session.submit()
            logs = captured_logs()
            assert any(r["message"] == "payment_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settlement")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


# =============================================================================
# Fake payment service
# =============================================================================


class FakeGateway:
    """
    In-memory PaymentServiceGateway.

    Records every call.  Set ``fail_<operation>`` to make that operation
    raise ExternalServiceError; set ``submit_response`` to control what the
    payment service answers.
    """

    def __init__(self) -> None:
        self.credit_notes: list[dict[str, Any]] = []
        self.customers: list[dict[str, Any]] = []
        self.bank_accounts: list[dict[str, Any]] = [
            {"_id": "bank-1", "name": "Operating"},
            {"_id": "bank-2", "name": "Savings"},
        ]
        self.submit_response: dict[str, Any] = {"success": True, "message": "Payment recorded"}
        self.fail_search_credit_notes = False
        self.fail_search_customers = False
        self.fail_list_bank_accounts = False
        self.fail_submit_payment = False
        self.on_submit = None
        self.credit_note_queries: list[tuple[str, CreditNoteFilter, int]] = []
        self.customer_queries: list[tuple[str, int]] = []
        self.submitted: list[dict[str, Any]] = []

    def search_credit_notes(self, term, filters, limit=20):
        self.credit_note_queries.append((term, filters, limit))
        if self.fail_search_credit_notes:
            raise ExternalServiceError("search_credit_notes", "timeout")
        return [n for n in self.credit_notes if term.lower() in n["creditNoteNumber"].lower()][:limit]

    def search_customers(self, term, limit=20):
        self.customer_queries.append((term, limit))
        if self.fail_search_customers:
            raise ExternalServiceError("search_customers", "timeout")
        return [c for c in self.customers if term.lower() in c["name"].lower()][:limit]

    def list_bank_accounts(self):
        if self.fail_list_bank_accounts:
            raise ExternalServiceError("list_bank_accounts", "unavailable")
        return list(self.bank_accounts)

    def submit_payment(self, request):
        self.submitted.append(request)
        if self.on_submit is not None:
            self.on_submit(request)
        if self.fail_submit_payment:
            raise ExternalServiceError("submit_payment", "502 Bad Gateway")
        return dict(self.submit_response)


@pytest.fixture
def gateway():
    return FakeGateway()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_invoice():
    """Build an Invoice; ``balance`` defaults to ``total - payed - discount``."""
    counter = {"n": 0}

    def _make(
        total: str = "500.00",
        payed: str = "0",
        discount: str = "0",
        balance: str | None = None,
        invoice_id: str | None = None,
        customer_id: str | None = "cust-1",
    ) -> Invoice:
        counter["n"] += 1
        total_d = Decimal(total)
        payed_d = Decimal(payed)
        discount_d = Decimal(discount)
        balance_d = Decimal(balance) if balance is not None else total_d - payed_d - discount_d
        return Invoice(
            id=invoice_id or f"inv-{counter['n']}",
            total_amount=total_d,
            total_payed_amount=payed_d,
            balance_to_receive=balance_d,
            discount=discount_d,
            customer_id=customer_id,
            name=f"INV-{counter['n']:04d}",
        )

    return _make


@pytest.fixture
def make_credit_note():
    counter = {"n": 0}

    def _make(remaining: str = "100.00", note_id: str | None = None) -> CreditNote:
        counter["n"] += 1
        return CreditNote(
            id=note_id or f"cn-{counter['n']}",
            credit_note_number=f"CN-{counter['n']:04d}",
            remaining_balance=Decimal(remaining),
            issued_on=date(2024, 1, 1),
            customer_id="cust-1",
        )

    return _make


@pytest.fixture
def customer():
    return Customer(id="cust-1", name="Acme Trading", code="C001", balance=Decimal("200.00"))


@pytest.fixture
def payment_date():
    return date(2024, 3, 15)
