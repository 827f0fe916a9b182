"""
Module: settlement_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settlement_kernel.  MUST NOT import settlement_modules
    or settlement_services.

Invariants enforced:
    - Determinism: identical inputs always produce identical outputs.
    - Decimal-only arithmetic at two-decimal precision.

Usage:
    from settlement_engines import AllocationCalculator, CashFieldState
"""

from settlement_engines.allocation import (
    AllocationCalculator,
    AllocationResult,
    compute_allocation,
)
from settlement_engines.cash_field import (
    CASH_FIELD_TRANSITIONS,
    CashFieldEvent,
    CashFieldMode,
    CashFieldState,
)
from settlement_engines.tracer import traced_engine

__all__ = [
    "AllocationCalculator",
    "AllocationResult",
    "compute_allocation",
    "CASH_FIELD_TRANSITIONS",
    "CashFieldEvent",
    "CashFieldMode",
    "CashFieldState",
    "traced_engine",
]
