"""Tier Resolver: picks the margin tier that applies to an order revenue."""
import logging
from decimal import Decimal
from typing import Optional, Sequence

from margindesk.services.errors import ConfigurationError, ValidationError
from margindesk.services.money import ZERO
from margindesk.services.pricing_models import MarginTier, RateConfiguration, ResolvedTier

logger = logging.getLogger("margindesk-pricing")


def _sort_key(tier: MarginTier):
    return (tier.display_order, tier.min_revenue, tier.id if tier.id is not None else 0)


def resolve_tier(
    revenue: Decimal,
    tiers: Sequence[MarginTier],
    rates: Optional[RateConfiguration] = None,
) -> ResolvedTier:
    """
    Select the tier whose [min_revenue, max_revenue) bracket contains `revenue`.

    - Overlapping matches: lowest display_order wins.
    - No match: the open-ended tier with the highest min_revenue acts as catch-all;
      without one the tier table has a gap -> ConfigurationError.
    - Empty tier table: rates.fallback_minimum_margin_rate is used as both margin
      and minimum margin; if that is missing too -> ConfigurationError.

    Quantity-based tiers are not supported; tiers are revenue brackets only.
    """
    if revenue < ZERO:
        raise ValidationError("revenue must be >= 0", field="revenue")

    if not tiers:
        fallback = rates.fallback_minimum_margin_rate if rates is not None else None
        if fallback is None:
            raise ConfigurationError(
                "No margin tiers configured and no fallback minimum margin rate set",
                field="fallback_minimum_margin_rate",
            )
        return ResolvedTier(margin_rate=fallback, minimum_margin_rate=fallback, source="fallback")

    matches = sorted((t for t in tiers if t.matches(revenue)), key=_sort_key)
    if matches:
        if len(matches) > 1:
            logger.warning(
                f"Overlapping margin tiers for revenue {revenue}: "
                f"{[t.id for t in matches]}; using display_order {matches[0].display_order}"
            )
        chosen = matches[0]
        return ResolvedTier(
            margin_rate=chosen.margin_rate,
            minimum_margin_rate=chosen.minimum_margin_rate,
            tier=chosen,
            source="tier",
        )

    open_ended = [t for t in tiers if t.is_open_ended]
    if not open_ended:
        raise ConfigurationError(
            f"No margin tier covers revenue {revenue} and no open-ended tier exists",
            field="max_revenue",
        )
    catch_all = max(open_ended, key=lambda t: (t.min_revenue, -t.display_order))
    return ResolvedTier(
        margin_rate=catch_all.margin_rate,
        minimum_margin_rate=catch_all.minimum_margin_rate,
        tier=catch_all,
        source="catch_all",
    )
