"""
Module: stock_kernel.db.types
Responsibility: Annotated type aliases and helpers for stock quantity columns.
    Centralizes precision, rounding and tolerance so every model, engine and
    service compares quantities the same way.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and stock_engines.  MUST NOT import from those layers.

Invariants enforced:
    - No floats for quantities.  to_quantity() rejects float input.
    - QUANTITY_EPSILON (0.01) is the single tolerance used to decide whether
      two quantities differ (repair, resync, drift detection).
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Quantity = Annotated[Decimal, Numeric(38, 9)]

ShortCode = Annotated[str, String(50)]

Notes = Annotated[str, String(1000)]

QUANTITY_DECIMAL_PLACES = 9
DISPLAY_DECIMAL_PLACES = 2
QUANTITY_EPSILON = Decimal("0.01")
ZERO = Decimal("0")
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_quantity(value: Decimal | int | str) -> Decimal:
    """
    Coerce a value to a Decimal quantity.

    Raises:
        TypeError: If value is a float (or bool).
        ValueError: If a string cannot be parsed.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(
            f"Quantities must be Decimal, int or str, not {type(value).__name__}"
        )
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Invalid quantity: {value!r}") from None


def round_quantity(
    value: Decimal,
    decimal_places: int = QUANTITY_DECIMAL_PLACES,
) -> Decimal:
    """Round a quantity to storage precision with ROUND_HALF_UP."""
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=DEFAULT_ROUNDING)


def quantities_differ(
    a: Decimal,
    b: Decimal,
    epsilon: Decimal = QUANTITY_EPSILON,
) -> bool:
    """True when |a - b| exceeds the tolerance."""
    return abs(a - b) > epsilon
