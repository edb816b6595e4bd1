"""Pricing routes: rate configuration, margin tiers, price preview."""
import logging
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from margindesk.db import get_db
from margindesk.api.deps import VENDOR, get_current_user, require_admin, require_role
from margindesk.models.orm_models import User
from margindesk.models.pricing_schema import CalculatePriceRequest, MarginTierIn, RateConfigurationUpdate
from margindesk.services import rate_store
from margindesk.services.price_calculator import calculate_price

router = APIRouter(prefix="/api/pricing", tags=["Pricing"])
logger = logging.getLogger("margindesk-api")


@router.get("/settings")
async def get_settings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Active rate configuration plus its tier table."""
    row = await rate_store.get_active_settings(db)
    return {
        **rate_store.settings_to_dict(row),
        "tiers": [rate_store.band_to_dict(t) for t in row.tiers],
    }


@router.put("/settings")
async def update_settings(
    payload: RateConfigurationUpdate,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Validate against every existing tier, then save.  422 names the offending rate."""
    row = await rate_store.update_rate_configuration(db, payload.model_dump(exclude_none=True), str(user.id))
    return {"status": "updated", "settings": rate_store.settings_to_dict(row)}


@router.get("/margin-tiers/{settings_id}")
async def list_margin_tiers(
    settings_id: int,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    bands = await rate_store.list_margin_tiers(db, settings_id)
    return {"total": len(bands), "tiers": [rate_store.band_to_dict(b) for b in bands]}


@router.post("/margin-tiers", status_code=201)
async def create_margin_tier(
    payload: MarginTierIn,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    band = await rate_store.upsert_margin_tier(db, payload.model_dump())
    return rate_store.band_to_dict(band)


@router.put("/margin-tiers/{tier_id}")
async def update_margin_tier(
    tier_id: int,
    payload: MarginTierIn,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    band = await rate_store.upsert_margin_tier(db, payload.model_dump(exclude_unset=True), tier_id=tier_id)
    if band is None:
        raise HTTPException(status_code=404, detail="Margin tier not found")
    return rate_store.band_to_dict(band)


@router.delete("/margin-tiers/{tier_id}")
async def delete_margin_tier(
    tier_id: int,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await rate_store.delete_margin_tier(db, tier_id):
        raise HTTPException(status_code=404, detail="Margin tier not found")
    return {"status": "deleted", "id": tier_id}


@router.post("/calculate")
async def calculate(
    req: CalculatePriceRequest,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    """
    Price preview.  Reads one (rates, tiers) snapshot and computes from it;
    nothing is persisted.
    """
    rates, tiers = await rate_store.load_snapshot(db)
    result = calculate_price(req.cost, req.quantity, req.revenue, rates, tiers)
    return result.to_dict()
