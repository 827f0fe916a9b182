"""
Module: settlement_kernel.domain.amounts
Responsibility: Canonical two-decimal money precision.  Centralizes parsing,
    rounding, clamping and the fixed settlement tolerances so that every
    boundary (user input, derived totals, submission payload) applies the
    same precision.
Architecture position: Kernel > Domain.  Imported by engines, modules and
    services.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats in arithmetic.  Floats coming from a UI are converted
      through ``str`` at the parse boundary.
    - ``round_money()`` is the ONLY rounding function for monetary values.
    - COVERAGE_TOLERANCE is exactly one cent and is not configurable.

Failure modes:
    - InvalidAmountError on bool, non-numeric strings, NaN and infinities.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from settlement_kernel.exceptions import InvalidAmountError

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")

# Sole tolerance for "does the settlement balance": one cent.
COVERAGE_TOLERANCE = Decimal("0.01")

# Slack for deductions-versus-payments checks at submit time.
DEDUCTION_TOLERANCE = Decimal("0.001")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the canonical precision.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized to ``decimal_places`` using
        ``rounding`` (ROUND_HALF_UP by default).

    Example:
        round_money(Decimal("10.555")) -> Decimal("10.56")
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def parse_amount(value: Any) -> Decimal:
    """
    Parse user or record input into a rounded Decimal.

    Accepts Decimal, int, float and numeric strings (surrounding whitespace
    is ignored).  Negative values are returned as-is; range checks belong to
    the caller.

    Raises:
        InvalidAmountError: bool, None, blank or non-numeric input, NaN,
            infinities.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(value)
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidAmountError(value)
        try:
            parsed = Decimal(text)
        except InvalidOperation as e:
            raise InvalidAmountError(value) from e
    else:
        raise InvalidAmountError(value)

    if not parsed.is_finite():
        raise InvalidAmountError(value)
    try:
        return round_money(parsed)
    except InvalidOperation as e:
        # Too many digits for the decimal context.
        raise InvalidAmountError(value) from e


def parse_optional_amount(value: Any) -> Decimal | None:
    """Like ``parse_amount`` but maps None and blank strings to None."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return parse_amount(value)


def non_negative(value: Decimal) -> Decimal:
    """max(0, value), at canonical precision."""
    return round_money(max(ZERO, value))


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """Clamp ``value`` into [lower, upper].  ``upper`` below ``lower`` yields ``lower``."""
    if upper < lower:
        return lower
    return min(max(value, lower), upper)
