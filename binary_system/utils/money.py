# binary_system/utils/money.py
"""
Decimal helpers for monetary values.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from binary_system.errors import InvalidAmount

ZERO = Decimal("0")
CENT = Decimal("0.01")


def toMoney(value) -> Decimal:
    """Convert to Decimal rounded half-up to cents. None counts as zero."""
    if value is None:
        return ZERO.quantize(CENT)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def requirePositive(value) -> Decimal:
    """Parse a monetary input, rejecting anything that is not > 0."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"Malformed amount: {value!r}")

    if not amount.is_finite():
        raise InvalidAmount(f"Malformed amount: {value!r}")

    amount = toMoney(amount)
    if amount <= ZERO:
        raise InvalidAmount(f"Amount must be positive, got {value!r}")
    return amount


def percentOf(amount: Decimal, pct: Decimal) -> Decimal:
    """amount * pct / 100, rounded to cents."""
    return toMoney(Decimal(amount) * Decimal(str(pct)) / Decimal("100"))
