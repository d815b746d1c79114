"""
Exact base-10 arithmetic for money and quantities.

All monetary values in the SDK are ``Decimal``. Sums and products are
computed in a wide context so they stay exact; divisions are rounded to
``DIVISION_PLACES`` decimal places half-up, which is how the matcher rounds
margin quotients. Order volumes are truncated to ``MATCHER_PLACES`` places
before they are accumulated, mirroring the matcher's fixed-point numbers.
"""

from contextlib import contextmanager
from decimal import (
    ROUND_DOWN,
    ROUND_HALF_UP,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    localcontext,
)
from typing import Iterable, Iterator, Union

DecimalLike = Union[Decimal, int, float, str, None]

ZERO = Decimal("0")
ONE = Decimal("1")

DIVISION_PLACES = 20
MATCHER_PLACES = 8

_DIVISION_QUANTUM = Decimal(1).scaleb(-DIVISION_PLACES)
_MATCHER_QUANTUM = Decimal(1).scaleb(-MATCHER_PLACES)

MONEY_CONTEXT = Context(
    prec=80,
    rounding=ROUND_HALF_UP,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)


@contextmanager
def money_context() -> Iterator[Context]:
    """Run a block of arithmetic in the wide monetary context."""
    with localcontext(MONEY_CONTEXT) as ctx:
        yield ctx


def to_decimal(value: DecimalLike, default: Decimal = ZERO) -> Decimal:
    """
    Convert a wire value to Decimal without passing through binary floats.

    Floats are converted via their shortest repr, so ``0.1`` becomes
    ``Decimal("0.1")`` rather than its binary expansion.

    Args:
        value: Decimal, int, float, numeric string or None
        default: Returned for None and empty strings

    Returns:
        Decimal value

    Raises:
        ValueError: If value is not numeric
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric value: {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    text = str(value).strip()
    if not text:
        return default
    try:
        return Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"Not a numeric value: {value!r}") from e


def div(dividend: DecimalLike, divisor: DecimalLike) -> Decimal:
    """
    Divide and round to DIVISION_PLACES places, half-up.

    Raises:
        ZeroDivisionError: If divisor is zero
    """
    a = to_decimal(dividend)
    b = to_decimal(divisor)
    if b == 0:
        raise ZeroDivisionError("Decimal division by zero")
    with money_context():
        return (a / b).quantize(_DIVISION_QUANTUM, rounding=ROUND_HALF_UP)


def to_matcher_number(value: DecimalLike) -> Decimal:
    """Truncate a value to the matcher's fixed-point precision."""
    with money_context():
        return to_decimal(value).quantize(_MATCHER_QUANTUM, rounding=ROUND_DOWN)


def dsum(values: Iterable[DecimalLike]) -> Decimal:
    """Exact sum of decimal-like values."""
    total = ZERO
    with money_context():
        for value in values:
            total += to_decimal(value)
    return total


def dmax(*values: DecimalLike) -> Decimal:
    """Largest of the given values, compared as decimals."""
    return max(to_decimal(v) for v in values)


def non_negative(value: DecimalLike) -> Decimal:
    """Clamp a value at zero."""
    return dmax(ZERO, value)


def leverage_or_one(leverage: DecimalLike) -> Decimal:
    """Leverage with a floor of one, so margin quotients never divide by zero."""
    lev = to_decimal(leverage, ONE)
    return lev if lev >= ONE else ONE


def to_display_float(value: DecimalLike) -> float:
    """Convert to float for display only. Never feed the result back into math."""
    return float(to_decimal(value))
