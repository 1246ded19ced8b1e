"""Decimal helpers for monetary arithmetic.

Amounts are rounded half away from zero to cents. ``decimal.ROUND_HALF_UP``
rounds ties away from zero for both signs, so -0.005 becomes -0.01.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from backoffice.documents.errors import ComputationError

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Decimal | int | float | str, *, field: str = "value") -> Decimal:
    """Convert a number to Decimal, failing closed on NaN or Infinity.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1") rather than its
    binary expansion.

    Raises:
        ComputationError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ComputationError(f"{field} is not a number: {value!r}") from e

    if not result.is_finite():
        raise ComputationError(f"{field} must be finite, got {value!r}")
    return result


def round2(value: Decimal | int | float | str) -> Decimal:
    """Round to 2 decimal places, half away from zero.

    Raises:
        ComputationError: If the value is not finite or too large to carry cents
    """
    number = to_decimal(value)
    try:
        return number.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        # quantize needs precision for every integer digit plus two decimals
        raise ComputationError(f"Amount out of range: {number}") from e
