"""
settlement_services -- contracts with the external payment service and the
debounced search used against it.
"""

from settlement_services.gateway import (
    DEFAULT_PAGE_SIZE,
    CreditNoteFilter,
    PaymentServiceGateway,
)
from settlement_services.search import DebouncedSearch, SearchSequencer, SearchTicket

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "CreditNoteFilter",
    "DebouncedSearch",
    "PaymentServiceGateway",
    "SearchSequencer",
    "SearchTicket",
]
