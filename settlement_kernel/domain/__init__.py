"""
Pure domain helpers.

No dependencies on I/O, the network, or the wall clock (except
SystemClock, the one sanctioned time boundary).
"""

from settlement_kernel.domain.amounts import (
    COVERAGE_TOLERANCE,
    DEDUCTION_TOLERANCE,
    MONEY_DECIMAL_PLACES,
    ZERO,
    clamp,
    non_negative,
    parse_amount,
    parse_optional_amount,
    round_money,
)
from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "COVERAGE_TOLERANCE",
    "DEDUCTION_TOLERANCE",
    "MONEY_DECIMAL_PLACES",
    "ZERO",
    "clamp",
    "non_negative",
    "parse_amount",
    "parse_optional_amount",
    "round_money",
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
