"""
Quote routes: draft editing, the authorization gate, and the admin queue.

Every mutation runs through the pure aggregator / gate on a domain snapshot
of the row, then writes the result back.  Concurrent writers are caught by
the row's version column; a gate action that loses the race is re-evaluated
once against the fresh row before the caller gets a 409.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from margindesk.db import get_db
from margindesk.api.deps import ADMIN, CLIENT, VENDOR, get_current_user, get_role_name, require_admin, require_role
from margindesk.models.orm_models import SalesQuote, User, gen_uuid
from margindesk.models.pricing_schema import (
    AdminRejectRequest,
    LineItemCreate,
    LineItemUpdate,
    QuoteCreate,
    QuoteTermsUpdate,
    TransitionRequest,
)
from margindesk.services import quote_service, rate_store
from margindesk.services.authorization_gate import GateAction, apply_transition
from margindesk.services.errors import StaleStateError
from margindesk.services.pricing_models import CLIENT_VISIBLE_STATES, LifecycleStatus, Quote
from margindesk.services.quote_aggregator import (
    add_line_item,
    aggregate_quote,
    build_line_item,
    remove_line_item,
    update_line_item,
    update_terms,
    validate_terms,
)

router = APIRouter(prefix="/api/quotes", tags=["Quotes"])
logger = logging.getLogger("margindesk-quotes")


# ─── Helpers ────────────────────────────────────────────────────────────────

async def _load_for(db: AsyncSession, quote_id: str, user: User) -> SalesQuote:
    """Fetch a quote the caller may act on.  Clients never learn hidden quotes exist."""
    row = await quote_service.load_quote(db, quote_id)
    if not row:
        raise HTTPException(status_code=404, detail="Quote not found")

    role = await get_role_name(user, db)
    if role == ADMIN:
        return row
    if role == VENDOR and row.vendor_id == str(user.id):
        return row
    if role == CLIENT and row.client_id == str(user.id):
        if LifecycleStatus(row.lifecycle_status) in CLIENT_VISIBLE_STATES:
            return row
        raise HTTPException(status_code=404, detail="Quote not found")
    raise HTTPException(status_code=403, detail="Access denied")


def _check_version(row: SalesQuote, expected_version: Optional[int], action: str) -> None:
    if expected_version is not None and expected_version != row.version:
        logger.warning(
            f"Quote {row.id}: {action} refused, version {expected_version} is behind {row.version}",
            extra={"quote_id": row.id},
        )
        raise StaleStateError(
            f"Quote was modified (version {row.version}, you sent {expected_version})",
            current=quote_service.quote_to_dict(row),
            action=action,
        )


async def _save_edit(db: AsyncSession, row: SalesQuote, quote: Quote, action: str) -> dict:
    """Write a draft edit.  A lost race is reported, never retried: the edit was made against old data."""
    quote_service.sync_quote_row(row, quote)
    quote_id = row.id
    try:
        await db.flush()
    except StaleDataError:
        await db.rollback()
        current = await quote_service.load_quote(db, quote_id)
        logger.warning(f"Quote {quote_id}: concurrent write during {action}", extra={"quote_id": quote_id})
        raise StaleStateError(
            "Quote was modified by another request",
            current=quote_service.quote_to_dict(current) if current else None,
            action=action,
        )
    return quote_service.quote_to_dict(row, quote)


async def _run_transition(
    db: AsyncSession,
    row: SalesQuote,
    user: User,
    action: GateAction,
    req: Optional[TransitionRequest],
    reason: Optional[str] = None,
) -> dict:
    req = req or TransitionRequest()
    # captured up front: a rollback expires every loaded instance
    quote_id, actor_id = row.id, str(user.id)
    for attempt in (1, 2):
        result = apply_transition(
            quote_service.quote_to_domain(row),
            action,
            reason=reason,
            expected_lifecycle=req.expected_lifecycle,
            expected_authorization=req.expected_authorization,
        )
        if result.error is not None:
            raise StaleStateError(
                result.error.message,
                current=quote_service.quote_to_dict(row),
                action=action.value,
            )
        quote_service.record_transition(row, result, actor_id)
        try:
            await db.flush()
        except StaleDataError:
            await db.rollback()
            logger.warning(
                f"Quote {quote_id}: {action.value} lost a concurrent write (attempt {attempt})",
                extra={"quote_id": quote_id},
            )
            row = await quote_service.load_quote(db, quote_id)
            if row is None:
                raise HTTPException(status_code=404, detail="Quote not found")
            if attempt == 2:
                raise StaleStateError(
                    "Quote was modified by another request",
                    current=quote_service.quote_to_dict(row),
                    action=action.value,
                )
            continue
        return {
            "action": action.value,
            "applied": result.applied,
            "quote": quote_service.quote_to_dict(row, result.quote),
        }


# ─── Draft editing ──────────────────────────────────────────────────────────

@router.post("", status_code=201)
async def create_quote(
    req: QuoteCreate,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    """Open an empty draft owned by the calling vendor."""
    kind, value, shipping = validate_terms(req.discount_kind, req.discount_value, req.shipping_cost)
    row = SalesQuote(
        id=gen_uuid(),
        quote_number=quote_service.next_quote_number(),
        vendor_id=str(user.id),
        client_id=req.client_id,
        title=req.title,
        authorized_by=None,
        authorized_at=None,
        items=[],
        events=[],
    )
    quote = Quote(discount_kind=kind, discount_value=value, shipping_cost=shipping, id=row.id,
                  vendor_id=row.vendor_id, client_id=row.client_id)
    quote_service.sync_quote_row(row, quote)
    db.add(row)
    await db.flush()
    logger.info(f"Quote {row.id} ({row.quote_number}) created by {user.id}", extra={"quote_id": row.id})
    return quote_service.quote_to_dict(row, quote)


@router.get("/awaiting-authorization")
async def list_awaiting_authorization(
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin queue: quotes held below their floor, oldest first."""
    rows = await quote_service.list_awaiting_authorization(db)
    return {"total": len(rows), "items": [quote_service.awaiting_summary(r) for r in rows]}


@router.get("/{quote_id}")
async def get_quote(
    quote_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_for(db, quote_id, user)
    include_cost = await get_role_name(user, db) != CLIENT
    return quote_service.quote_to_dict(row, include_cost=include_cost)


@router.patch("/{quote_id}/terms")
async def update_quote_terms(
    quote_id: str,
    req: QuoteTermsUpdate,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_for(db, quote_id, user)
    _check_version(row, req.expected_version, "update_terms")
    quote = update_terms(
        quote_service.quote_to_domain(row),
        discount_kind=req.discount_kind,
        discount_value=req.discount_value,
        shipping_cost=req.shipping_cost,
    )
    return await _save_edit(db, row, quote, "update_terms")


@router.post("/{quote_id}/items", status_code=201)
async def add_item(
    quote_id: str,
    req: LineItemCreate,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    """
    Price the new line against the rates and tiers active right now and freeze
    its minimum unit price.  Tier revenue defaults to the current subtotal plus
    this line's own value.
    """
    row = await _load_for(db, quote_id, user)
    _check_version(row, req.expected_version, "add_item")
    current = quote_service.quote_to_domain(row)
    rates, tiers = await rate_store.load_snapshot(db)
    line = build_line_item(
        req.cost,
        req.quantity,
        req.unit_price,
        rates,
        tiers,
        current_subtotal=aggregate_quote(current).subtotal,
        revenue=req.revenue,
        surcharge=req.surcharge,
        product_id=req.product_id,
        description=req.description,
    )
    quote = add_line_item(current, line)
    return await _save_edit(db, row, quote, "add_item")


@router.patch("/{quote_id}/items/{item_id}")
async def update_item(
    quote_id: str,
    item_id: str,
    req: LineItemUpdate,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_for(db, quote_id, user)
    _check_version(row, req.expected_version, "update_item")
    quote = update_line_item(
        quote_service.quote_to_domain(row),
        item_id,
        unit_price=req.unit_price,
        quantity=req.quantity,
        surcharge=req.surcharge,
    )
    return await _save_edit(db, row, quote, "update_item")


@router.delete("/{quote_id}/items/{item_id}")
async def delete_item(
    quote_id: str,
    item_id: str,
    expected_version: Optional[int] = Query(None),
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_for(db, quote_id, user)
    _check_version(row, expected_version, "remove_item")
    quote = remove_line_item(quote_service.quote_to_domain(row), item_id)
    return await _save_edit(db, row, quote, "remove_item")


# ─── Authorization gate ─────────────────────────────────────────────────────

@router.post("/{quote_id}/send")
async def send_quote(
    quote_id: str,
    req: Optional[TransitionRequest] = None,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    """draft -> sent, or -> awaiting_authorization when any line is below its floor."""
    row = await _load_for(db, quote_id, user)
    return await _run_transition(db, row, user, GateAction.SEND, req)


@router.post("/{quote_id}/admin-approve")
async def admin_approve_quote(
    quote_id: str,
    req: Optional[TransitionRequest] = None,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approve a below-floor quote.  Repeating it is a no-op (`applied: false`)."""
    row = await _load_for(db, quote_id, user)
    return await _run_transition(db, row, user, GateAction.ADMIN_APPROVE, req)


@router.post("/{quote_id}/admin-reject")
async def admin_reject_quote(
    quote_id: str,
    req: Optional[AdminRejectRequest] = None,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Send a held quote back to the vendor's draft with an optional reason."""
    row = await _load_for(db, quote_id, user)
    return await _run_transition(db, row, user, GateAction.ADMIN_REJECT, req, reason=req.reason if req else None)


@router.post("/{quote_id}/client-approve")
async def client_approve_quote(
    quote_id: str,
    req: Optional[TransitionRequest] = None,
    user: User = Depends(require_role(CLIENT)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_for(db, quote_id, user)
    return await _run_transition(db, row, user, GateAction.CLIENT_APPROVE, req)


@router.post("/{quote_id}/client-reject")
async def client_reject_quote(
    quote_id: str,
    req: Optional[TransitionRequest] = None,
    user: User = Depends(require_role(CLIENT)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_for(db, quote_id, user)
    return await _run_transition(db, row, user, GateAction.CLIENT_REJECT, req)


@router.post("/{quote_id}/convert")
async def convert_quote(
    quote_id: str,
    req: Optional[TransitionRequest] = None,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """approved -> converted, for the fulfillment side."""
    row = await _load_for(db, quote_id, user)
    return await _run_transition(db, row, user, GateAction.CONVERT, req)


@router.get("/{quote_id}/authorization-history")
async def authorization_history(
    quote_id: str,
    user: User = Depends(require_role(VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    row = await _load_for(db, quote_id, user)
    return {
        "quote_id": row.id,
        "revision": row.revision,
        "events": [quote_service.event_to_dict(e) for e in row.events],
    }
