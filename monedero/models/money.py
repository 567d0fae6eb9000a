"""
Money Arithmetic Helpers

DESIGN DECISION: All amounts and rates are Decimal. Upstream APIs hand us
floats and strings; they are converted once, at the boundary, through
to_decimal().

SAFE DIVIDE POLICY:
A zero (or negative) denominator never raises and never produces NaN or
Infinity. The result is clamped to 0. Every conversion in the engine goes
through safe_divide() so the policy is visible and testable in one place.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")


def to_decimal(value: Number) -> Decimal:
    """
    Convert a number to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"),
    not its binary expansion.

    Raises:
        ValueError: If the value is not numeric or not finite
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"Not a number: {value!r}") from e

    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def quantize(value: Number, places: int = 2) -> Decimal:
    """Round half-up to a fixed number of decimal places."""
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def safe_divide(numerator: Number, denominator: Number) -> Decimal:
    """Divide, clamping to 0 when the denominator is not positive."""
    denominator = to_decimal(denominator)
    if denominator <= 0:
        return ZERO
    return to_decimal(numerator) / denominator
