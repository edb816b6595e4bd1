"""
Rate Configuration Store + Margin Tier Table.

One active PricingSettings row (created from env defaults on first read) and
its MarginBand rows.  Reads hand out immutable domain snapshots; writes are
validated against the whole tier table before anything is flushed.
"""
import os
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from margindesk.models.orm_models import MarginBand, PricingSettings
from margindesk.services.money import ZERO
from margindesk.services.pricing_models import MarginTier, RateConfiguration
from margindesk.services.rate_validation import validate_margin_tier, validate_rate_configuration

logger = logging.getLogger("margindesk-rates")

# Admin defaults of the legacy pricing screen: tax 9 %, commission 15 %,
# cash discount 5 %, minimum margin 20 %.
DEFAULT_RATES = {
    "tax_rate": Decimal(os.getenv("DEFAULT_TAX_RATE", "0.09")),
    "commission_rate": Decimal(os.getenv("DEFAULT_COMMISSION_RATE", "0.15")),
    "cash_discount_rate": Decimal(os.getenv("DEFAULT_CASH_DISCOUNT_RATE", "0.05")),
    "fallback_minimum_margin_rate": Decimal(os.getenv("DEFAULT_FALLBACK_MINIMUM_MARGIN_RATE", "0.20")),
}

_RATE_FIELDS = ("tax_rate", "commission_rate", "cash_discount_rate", "fallback_minimum_margin_rate")
_TIER_FIELDS = ("min_revenue", "max_revenue", "margin_rate", "minimum_margin_rate", "display_order")


# ─── Row <-> domain ──────────────────────────────────────────────────────────

def settings_to_domain(row: PricingSettings) -> RateConfiguration:
    return RateConfiguration(
        tax_rate=Decimal(row.tax_rate),
        commission_rate=Decimal(row.commission_rate),
        cash_discount_rate=Decimal(row.cash_discount_rate if row.cash_discount_rate is not None else ZERO),
        fallback_minimum_margin_rate=(
            Decimal(row.fallback_minimum_margin_rate)
            if row.fallback_minimum_margin_rate is not None else None
        ),
        id=row.id,
    )


def band_to_domain(row: MarginBand) -> MarginTier:
    return MarginTier(
        min_revenue=Decimal(row.min_revenue if row.min_revenue is not None else ZERO),
        max_revenue=Decimal(row.max_revenue) if row.max_revenue is not None else None,
        margin_rate=Decimal(row.margin_rate),
        minimum_margin_rate=Decimal(row.minimum_margin_rate),
        display_order=row.display_order or 0,
        id=row.id,
        configuration_id=row.settings_id,
    )


def settings_to_dict(row: PricingSettings) -> dict:
    return {
        "id": row.id,
        "tax_rate": row.tax_rate,
        "commission_rate": row.commission_rate,
        "cash_discount_rate": row.cash_discount_rate,
        "fallback_minimum_margin_rate": row.fallback_minimum_margin_rate,
        "last_updated": row.last_updated.isoformat() if row.last_updated else None,
        "updated_by": row.updated_by,
    }


def band_to_dict(row: MarginBand) -> dict:
    return {
        "id": row.id,
        "settings_id": row.settings_id,
        "min_revenue": row.min_revenue,
        "max_revenue": row.max_revenue,
        "margin_rate": row.margin_rate,
        "minimum_margin_rate": row.minimum_margin_rate,
        "display_order": row.display_order,
    }


# ─── Validated mutation (pure; no I/O) ───────────────────────────────────────

def apply_rate_update(row: PricingSettings, updates: dict) -> RateConfiguration:
    """
    Merge `updates` into the settings row after validating the merged
    configuration against every tier of that row.  Row is untouched on error.
    """
    current = settings_to_domain(row)
    merged = RateConfiguration(
        tax_rate=updates.get("tax_rate", current.tax_rate),
        commission_rate=updates.get("commission_rate", current.commission_rate),
        cash_discount_rate=updates.get("cash_discount_rate", current.cash_discount_rate),
        fallback_minimum_margin_rate=updates.get(
            "fallback_minimum_margin_rate", current.fallback_minimum_margin_rate
        ),
        id=current.id,
    )
    validated = validate_rate_configuration(merged, [band_to_domain(t) for t in row.tiers])
    for field in _RATE_FIELDS:
        setattr(row, field, getattr(validated, field))
    return validated


def apply_tier_update(band: MarginBand, payload: dict, rates: RateConfiguration) -> MarginTier:
    """Validate the merged tier against `rates`, then write it onto `band`."""
    existing = {f: getattr(band, f) for f in _TIER_FIELDS}
    merged = {**existing, **{k: v for k, v in payload.items() if k in _TIER_FIELDS}}
    tier = validate_margin_tier(
        MarginTier(
            min_revenue=merged["min_revenue"] if merged["min_revenue"] is not None else ZERO,
            max_revenue=merged["max_revenue"],
            margin_rate=merged["margin_rate"],
            minimum_margin_rate=merged["minimum_margin_rate"],
            display_order=merged["display_order"] or 0,
            id=band.id,
            configuration_id=band.settings_id,
        ),
        rates,
    )
    for field in _TIER_FIELDS:
        setattr(band, field, getattr(tier, field))
    return tier


# ─── Async store operations ──────────────────────────────────────────────────

async def _select_active(db: AsyncSession) -> Optional[PricingSettings]:
    result = await db.execute(select(PricingSettings).where(PricingSettings.is_active.is_(True)))
    return result.scalars().first()


async def get_active_settings(db: AsyncSession) -> PricingSettings:
    """
    GetRateConfiguration(): the active row, seeded from defaults if absent.

    The seed runs in a savepoint.  If a concurrent request seeded first, the
    one-active-row index rejects this insert and the winner's row is returned.
    """
    row = await _select_active(db)
    if row is not None:
        return row

    try:
        async with db.begin_nested():
            row = PricingSettings(is_active=True, **DEFAULT_RATES)
            row.tiers = []
            db.add(row)
    except IntegrityError:
        logger.info("Default pricing settings already seeded by a concurrent request")
        row = await _select_active(db)
        if row is None:
            raise
        return row
    logger.info(f"Seeded default pricing settings id={row.id}")
    return row


async def load_snapshot(db: AsyncSession) -> Tuple[RateConfiguration, List[MarginTier]]:
    """Immutable (rates, tiers) pair for one calculation or line-item freeze."""
    row = await get_active_settings(db)
    return settings_to_domain(row), [band_to_domain(t) for t in row.tiers]


async def update_rate_configuration(db: AsyncSession, updates: dict, user_id: Optional[str]) -> PricingSettings:
    row = await get_active_settings(db)
    apply_rate_update(row, updates)
    row.updated_by = user_id
    await db.flush()
    logger.info(f"Pricing settings {row.id} updated by {user_id}: {sorted(updates)}")
    return row


async def list_margin_tiers(db: AsyncSession, settings_id: int) -> List[MarginBand]:
    result = await db.execute(
        select(MarginBand)
        .where(MarginBand.settings_id == settings_id)
        .order_by(MarginBand.min_revenue, MarginBand.display_order)
    )
    return list(result.scalars().all())


async def upsert_margin_tier(db: AsyncSession, payload: dict, tier_id: Optional[int] = None) -> Optional[MarginBand]:
    """UpsertMarginTier(tier).  Returns None when `tier_id` does not exist."""
    settings = await get_active_settings(db)
    rates = settings_to_domain(settings)

    if tier_id is None:
        band = MarginBand(settings_id=settings.id)
        apply_tier_update(band, payload, rates)
        settings.tiers.append(band)
    else:
        result = await db.execute(select(MarginBand).where(MarginBand.id == tier_id))
        band = result.scalar_one_or_none()
        if band is None:
            return None
        apply_tier_update(band, payload, rates)

    await db.flush()
    logger.info(
        f"Margin tier {band.id} saved: [{band.min_revenue}, {band.max_revenue}) "
        f"margin={band.margin_rate} minimum={band.minimum_margin_rate}"
    )
    return band


async def delete_margin_tier(db: AsyncSession, tier_id: int) -> bool:
    result = await db.execute(select(MarginBand).where(MarginBand.id == tier_id))
    band = result.scalar_one_or_none()
    if band is None:
        return False
    await db.delete(band)
    await db.flush()
    logger.info(f"Margin tier {tier_id} deleted")
    return True
