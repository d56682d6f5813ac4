"""
Module: ledger_kernel.db.types
Responsibility: Annotated column aliases and the money helpers every model
    and service uses, so precision and rounding are defined exactly once.
Architecture position: Kernel > DB.  Imported by models/, domain/,
    services/ and selectors/.

Invariants enforced:
    - Monetary columns are Numeric(38, 9).
    - round_money() is the only rounding function applied to amounts.
      Ledger amounts are kept at 2 decimal places, ROUND_HALF_UP.
    - No floats: to_money() refuses float input.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

Money = Annotated[Decimal, Numeric(38, 9)]

# Company-scoped monotonic counter value
Sequence = Annotated[int, BigInteger]

ShortCode = Annotated[str, String(50)]
Name = Annotated[str, String(200)]
LongText = Annotated[str, String(1000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places`` using ``rounding``.

    This is the only sanctioned rounding function for ledger amounts.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_money(value: Decimal | int | str | None) -> Decimal:
    """
    Convert an inbound amount to a rounded Decimal.

    ``None`` is treated as zero, matching an omitted debit or credit on a
    journal line.

    Raises:
        TypeError: if ``value`` is a float.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats; pass Decimal or str")
    return round_money(Decimal(value))
