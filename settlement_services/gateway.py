"""
Payment-service gateway protocol and query DTOs.

Contract:
    PaymentServiceGateway is everything the settlement subsystem needs from
    the outside world: credit-note and customer search, bank account
    listing and the single non-idempotent payment submission.  Records are
    plain dicts in the external store's shape; the receipts module parses
    them into its own value objects.

    Implementations raise ExternalServiceError for transport or server
    failures.  They never retry.

Architecture: settlement_services. Kernel imports only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class CreditNoteFilter:
    """Server-side filter for credit-note search (standalone notes with money left)."""

    customer_id: str | None = None
    has_remaining_balance: bool = True
    credit_type: str = "independent"

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "hasRemainingBalance": self.has_remaining_balance,
            "creditType": self.credit_type,
        }
        if self.customer_id is not None:
            params["customer"] = self.customer_id
        return params


@runtime_checkable
class PaymentServiceGateway(Protocol):
    """Protocol for the external invoice/payment service."""

    def search_credit_notes(
        self,
        term: str,
        filters: CreditNoteFilter,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """Fuzzy match on ``term``.  Records: _id, creditNoteNumber, description, date, remainingBalance."""
        ...

    def search_customers(self, term: str, limit: int = DEFAULT_PAGE_SIZE) -> list[dict[str, Any]]:
        """Records: _id, name, Code, balance."""
        ...

    def list_bank_accounts(self) -> list[dict[str, Any]]:
        """Records: _id, name."""
        ...

    def submit_payment(self, request: dict[str, Any]) -> dict[str, Any]:
        """Submit one settlement.  Returns {success, message, customer?}."""
        ...
