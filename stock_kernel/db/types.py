"""
Module: stock_kernel.db.types
Responsibility: Annotated column types plus the conversion and rounding helpers
    for quantities and unit costs.  Centralizes precision so every model, store
    and engine uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and stock_engines.  MUST NOT import from those layers.

Invariants enforced:
    - No floats anywhere in stock accounting.  Quantities and unit costs are
      Decimal, persisted as Numeric(38, 9).
    - round_cost() is the ONLY sanctioned rounding function for computed unit
      costs (weighted averages, consumed-layer averages).
    - Inputs carry at most MAX_INTEGER_DIGITS integer digits so every value
      fits Numeric(38, 9); arithmetic on them runs at PRECISION digits.

Failure modes:
    - ValueError from to_decimal() on values that are not finite numbers.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Quantity = Annotated[Decimal, Numeric(38, 9)]
UnitCost = Annotated[Decimal, Numeric(38, 9)]

# Product / warehouse / location identifiers
ReferenceId = Annotated[str, String(100)]

SCALE = 9
PRECISION = 38
MAX_INTEGER_DIGITS = PRECISION - SCALE
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")

_QUANTUM = Decimal(1).scaleb(-SCALE)


def to_decimal(value: object) -> Decimal:
    """
    Convert a caller-supplied number to Decimal.

    Floats are converted through ``str`` so that ``0.1`` becomes
    ``Decimal("0.1")`` rather than its binary expansion.

    Raises:
        ValueError: If the value is not a finite number (None, NaN,
            infinity, bool, or an unparsable string).
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


def round_cost(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Round a computed unit cost to the persisted scale.

    This is the ONLY sanctioned rounding function for unit costs.
    """
    with localcontext(prec=PRECISION):
        return value.quantize(_QUANTUM, rounding=rounding)


def integer_digits(value: Decimal) -> int:
    """Digits left of the decimal point (0 for zero and pure fractions)."""
    if value.is_zero():
        return 0
    return max(value.adjusted() + 1, 0)
