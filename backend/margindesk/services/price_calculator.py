"""
Price Calculator: markup-divisor (reverse-margin) pricing.

    price = cost / (1 - tax_rate - commission_rate - margin_rate)

Rates are fractions of the *sale price*, not of cost, so a 28 % margin on a
10.00 cost with 11 % tax and 4 % commission gives 10 / 0.57 = 17.54, not 12.80.

Per-unit prices are kept unrounded; rounding (half-up, 2 dp) happens only on
the presentation properties of CalculationResult and on quantity totals.
"""
import logging
from decimal import Decimal
from typing import Iterable, Optional

from margindesk.services.errors import InvalidRateError, ValidationError
from margindesk.services.money import ONE, ZERO, Number, to_decimal
from margindesk.services.pricing_models import (
    CalculationResult,
    MarginTier,
    RateConfiguration,
    ResolvedTier,
)
from margindesk.services.tier_resolver import resolve_tier

logger = logging.getLogger("margindesk-pricing")


def markup_divisor(tax_rate: Decimal, commission_rate: Decimal, margin_rate: Decimal) -> Decimal:
    return ONE - tax_rate - commission_rate - margin_rate


def price_from_cost(
    cost: Decimal,
    tax_rate: Decimal,
    commission_rate: Decimal,
    margin_rate: Decimal,
    field: str = "margin_rate",
) -> Decimal:
    """Unrounded unit price for `cost`.  Raises InvalidRateError if the divisor is <= 0."""
    divisor = markup_divisor(tax_rate, commission_rate, margin_rate)
    if divisor <= ZERO:
        raise InvalidRateError(
            f"tax ({tax_rate}) + commission ({commission_rate}) + {field} ({margin_rate}) "
            f"must stay below 1; divisor is {divisor}",
            field=field,
        )
    return cost / divisor


def _validate_inputs(cost: Number, quantity: Number, revenue: Number):
    cost_d = to_decimal(cost, "cost")
    qty_d = to_decimal(quantity, "quantity")
    rev_d = to_decimal(revenue, "revenue")
    if cost_d <= ZERO:
        raise ValidationError("cost must be greater than zero", field="cost")
    if qty_d <= ZERO:
        raise ValidationError("quantity must be greater than zero", field="quantity")
    if rev_d < ZERO:
        raise ValidationError("revenue must be >= 0", field="revenue")
    return cost_d, qty_d, rev_d


def calculate_with_tier(
    cost: Number,
    quantity: Number,
    revenue: Number,
    rates: RateConfiguration,
    resolved: ResolvedTier,
) -> CalculationResult:
    """Price against an already-resolved tier (used when the tier was picked elsewhere)."""
    cost_d, qty_d, rev_d = _validate_inputs(cost, quantity, revenue)

    ideal = price_from_cost(
        cost_d, rates.tax_rate, rates.commission_rate, resolved.margin_rate, field="margin_rate"
    )
    minimum = price_from_cost(
        cost_d,
        rates.tax_rate,
        rates.commission_rate,
        resolved.minimum_margin_rate,
        field="minimum_margin_rate",
    )

    return CalculationResult(
        cost=cost_d,
        quantity=qty_d,
        revenue=rev_d,
        tax_rate=rates.tax_rate,
        commission_rate=rates.commission_rate,
        cash_discount_rate=rates.cash_discount_rate,
        resolved=resolved,
        ideal_unit_price_exact=ideal,
        minimum_unit_price_exact=minimum,
    )


def calculate_price(
    cost: Number,
    quantity: Number,
    revenue: Number,
    rates: RateConfiguration,
    tiers: Optional[Iterable[MarginTier]] = None,
) -> CalculationResult:
    """
    CalculatePrice(cost, quantity, revenue).

    Resolves the margin tier for `revenue`, then prices `cost` at both the
    tier's margin (ideal) and its minimum margin (floor).

    Raises:
        ValidationError:    cost/quantity <= 0 or revenue < 0
        ConfigurationError: no tier and no fallback rate
        InvalidRateError:   tax + commission + margin >= 1
    """
    _, _, rev_d = _validate_inputs(cost, quantity, revenue)
    resolved = resolve_tier(rev_d, list(tiers or []), rates)
    result = calculate_with_tier(cost, quantity, revenue, rates, resolved)
    logger.debug(
        f"Priced cost={result.cost} qty={result.quantity} revenue={result.revenue} "
        f"tier={resolved.tier_id or resolved.source} ideal={result.ideal_unit_price} "
        f"minimum={result.minimum_unit_price}"
    )
    return result
