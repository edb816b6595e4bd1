"""Decimal helpers for monetary and rate values (never float for money)."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from margindesk.services.errors import ValidationError

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
MILLI = Decimal("0.001")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Optional[Number], field: str = "value") -> Decimal:
    """
    Coerce to Decimal.  Floats go through str() so 0.1 stays 0.1.
    Comma decimal separators ("10,50") are accepted.
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", field=field)
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip().replace(",", "."))
        except InvalidOperation as exc:
            raise ValidationError(f"{field} must be numeric", field=field) from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    return result


def round_money(value: Decimal) -> Decimal:
    """Round half-up to 2 dp.  Only call at input, presentation and total boundaries."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_quantity(value: Decimal) -> Decimal:
    """Quantities are stored with 3 dp."""
    return value.quantize(MILLI, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += value
    return total


def percent_of(value: Decimal, percent: Decimal) -> Decimal:
    return value * percent / HUNDRED


def rate_to_percent(rate: Decimal) -> Decimal:
    return round_money(rate * HUNDRED)
