"""
Save-time validation for rate configurations and margin tiers.

Every save must keep tax + commission + margin strictly below 1 for every
tier (and for the fallback rate), otherwise later price calculations would
divide by a non-positive number.  Errors name the offending field.
"""
import logging
from decimal import Decimal
from typing import Iterable, Optional

from margindesk.services.errors import InvalidRateError, ValidationError
from margindesk.services.money import ONE, ZERO, Number, to_decimal
from margindesk.services.price_calculator import markup_divisor
from margindesk.services.pricing_models import MarginTier, RateConfiguration

logger = logging.getLogger("margindesk-pricing")


def validate_rate_fraction(value: Optional[Number], field: str) -> Decimal:
    try:
        rate = to_decimal(value, field)
    except ValidationError as exc:
        raise InvalidRateError(exc.message, field=field) from exc
    if rate < ZERO or rate >= ONE:
        raise InvalidRateError(f"{field} must be a fraction in [0, 1); got {rate}", field=field)
    return rate


def _check_divisor(rates: RateConfiguration, margin_rate: Decimal, field: str) -> None:
    if markup_divisor(rates.tax_rate, rates.commission_rate, margin_rate) <= ZERO:
        raise InvalidRateError(
            f"tax_rate ({rates.tax_rate}) + commission_rate ({rates.commission_rate}) "
            f"+ {field} ({margin_rate}) must be below 1",
            field=field,
        )


def validate_margin_tier(tier: MarginTier, rates: RateConfiguration) -> MarginTier:
    """Return a normalized copy of `tier` or raise naming the offending field."""
    min_revenue = to_decimal(tier.min_revenue, "min_revenue")
    if min_revenue < ZERO:
        raise ValidationError("min_revenue must be >= 0", field="min_revenue")

    max_revenue = None
    if tier.max_revenue is not None:
        max_revenue = to_decimal(tier.max_revenue, "max_revenue")
        if max_revenue <= min_revenue:
            raise ValidationError("max_revenue must be greater than min_revenue", field="max_revenue")

    margin_rate = validate_rate_fraction(tier.margin_rate, "margin_rate")
    minimum_margin_rate = validate_rate_fraction(tier.minimum_margin_rate, "minimum_margin_rate")
    if minimum_margin_rate > margin_rate:
        raise InvalidRateError(
            f"minimum_margin_rate ({minimum_margin_rate}) cannot exceed margin_rate ({margin_rate})",
            field="minimum_margin_rate",
        )
    # minimum <= margin, so checking the margin divisor covers both prices
    _check_divisor(rates, margin_rate, "margin_rate")

    return MarginTier(
        min_revenue=min_revenue,
        max_revenue=max_revenue,
        margin_rate=margin_rate,
        minimum_margin_rate=minimum_margin_rate,
        display_order=int(tier.display_order or 0),
        id=tier.id,
        configuration_id=tier.configuration_id,
    )


def validate_rate_configuration(
    rates: RateConfiguration,
    tiers: Iterable[MarginTier] = (),
) -> RateConfiguration:
    """
    Validate a configuration against itself and against every existing tier.
    A tax or commission change that would break any tier is rejected.
    """
    fallback = rates.fallback_minimum_margin_rate
    normalized = RateConfiguration(
        tax_rate=validate_rate_fraction(rates.tax_rate, "tax_rate"),
        commission_rate=validate_rate_fraction(rates.commission_rate, "commission_rate"),
        cash_discount_rate=validate_rate_fraction(rates.cash_discount_rate, "cash_discount_rate"),
        fallback_minimum_margin_rate=(
            validate_rate_fraction(fallback, "fallback_minimum_margin_rate")
            if fallback is not None else None
        ),
        id=rates.id,
    )

    if markup_divisor(normalized.tax_rate, normalized.commission_rate, ZERO) <= ZERO:
        raise InvalidRateError("tax_rate + commission_rate must be below 1", field="commission_rate")
    if normalized.fallback_minimum_margin_rate is not None:
        _check_divisor(normalized, normalized.fallback_minimum_margin_rate, "fallback_minimum_margin_rate")

    for tier in tiers:
        if markup_divisor(normalized.tax_rate, normalized.commission_rate, tier.margin_rate) <= ZERO:
            raise InvalidRateError(
                f"tax_rate + commission_rate would leave tier {tier.id} "
                f"(margin {tier.margin_rate}) with a non-positive price divisor",
                field="tax_rate",
            )
    return normalized

