"""
Ledger unit conversion.

Monetary values cross the ledger boundary as integers in the smallest unit
(wei, 18 decimal places). Everything above the LedgerClient works in display
decimals. This module is the only place the two meet.
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union


DECIMALS = 18
_SCALE = Decimal(10) ** DECIMALS

# uint256 has at most 78 decimal digits
_PRECISION = 80


class UnitError(ValueError):
    """Raised when an amount cannot be represented in ledger units."""
    pass


def to_native(amount: Union[Decimal, int, str, float]) -> int:
    """
    Display amount (ether) -> integer ledger units (wei).

    Floats are routed through ``str`` so 0.1 means 0.1, not its binary
    approximation. Raises UnitError for negative values or for more than 18
    decimal places.
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise UnitError(f"Not a number: {amount!r}") from e

    if not value.is_finite():
        raise UnitError(f"Not a finite amount: {amount!r}")
    if value < 0:
        raise UnitError(f"Negative amount: {amount}")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = value * _SCALE
        if scaled != scaled.to_integral_value():
            raise UnitError(f"More than {DECIMALS} decimal places: {amount}")
        return int(scaled)


def from_native(value: int) -> Decimal:
    """Integer ledger units (wei) -> display amount (ether), exact."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        result = Decimal(int(value)) / _SCALE
        if result == result.to_integral_value():
            return result.quantize(Decimal(1))
        return result.normalize()
