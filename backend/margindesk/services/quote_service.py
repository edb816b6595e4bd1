"""
Quote persistence glue.

Routes load a SalesQuote row, convert it to a domain Quote, run the pure
aggregator / gate, and write the result back through `sync_quote_row`.
Frozen line fields (minimum/ideal price, applied margins) are written when
an item row is created and never overwritten afterwards.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from margindesk.models.orm_models import AuthorizationEvent, SalesQuote, SalesQuoteItem, gen_uuid
from margindesk.services.authorization_gate import GateAction, TransitionResult
from margindesk.services.money import ZERO
from margindesk.services.pricing_models import (
    AuthorizationStatus,
    DiscountKind,
    LifecycleStatus,
    Quote,
    QuoteLineItem,
    QuoteTotals,
)
from margindesk.services.quote_aggregator import aggregate_quote

logger = logging.getLogger("margindesk-quotes")


def _dec(value, default: Decimal = ZERO) -> Decimal:
    return Decimal(value) if value is not None else default


# ─── Row -> domain ───────────────────────────────────────────────────────────

def item_to_domain(row: SalesQuoteItem) -> QuoteLineItem:
    return QuoteLineItem(
        cost_price=_dec(row.cost_price),
        quantity=_dec(row.quantity),
        unit_price=_dec(row.unit_price),
        minimum_unit_price=_dec(row.minimum_unit_price),
        ideal_unit_price=_dec(row.ideal_unit_price),
        margin_rate=_dec(row.margin_rate),
        minimum_margin_rate=_dec(row.minimum_margin_rate),
        surcharge=_dec(row.surcharge),
        product_id=row.product_id,
        description=row.description or "",
        position=row.position or 0,
        id=row.id,
    )


def quote_to_domain(row: SalesQuote) -> Quote:
    items = sorted(row.items, key=lambda i: i.position or 0)
    return Quote(
        lines=tuple(item_to_domain(i) for i in items),
        discount_kind=DiscountKind(row.discount_kind or DiscountKind.PERCENTAGE.value),
        discount_value=_dec(row.discount_value),
        shipping_cost=_dec(row.shipping_cost),
        lifecycle_status=LifecycleStatus(row.lifecycle_status or LifecycleStatus.DRAFT.value),
        authorization_status=AuthorizationStatus(row.authorization_status or AuthorizationStatus.NONE.value),
        revision=row.revision or 0,
        rejection_reason=row.rejection_reason,
        id=row.id,
        vendor_id=row.vendor_id,
        client_id=row.client_id,
    )


# ─── Domain -> row ───────────────────────────────────────────────────────────

def _new_item_row(line: QuoteLineItem) -> SalesQuoteItem:
    return SalesQuoteItem(
        id=line.id or gen_uuid(),
        position=line.position,
        product_id=line.product_id,
        description=line.description,
        cost_price=line.cost_price,
        quantity=line.quantity,
        unit_price=line.unit_price,
        surcharge=line.surcharge,
        minimum_unit_price=line.minimum_unit_price,
        ideal_unit_price=line.ideal_unit_price,
        margin_rate=line.margin_rate,
        minimum_margin_rate=line.minimum_margin_rate,
        total_price=line.total_price,
    )


def sync_quote_row(row: SalesQuote, quote: Quote, totals: Optional[QuoteTotals] = None) -> QuoteTotals:
    """
    Write `quote` onto `row`: scalar fields, derived totals, and the item set.
    Existing items only receive vendor-editable fields.
    """
    totals = totals or aggregate_quote(quote)

    row.discount_kind = quote.discount_kind.value
    row.discount_value = quote.discount_value
    row.shipping_cost = quote.shipping_cost
    row.lifecycle_status = quote.lifecycle_status.value
    row.authorization_status = quote.authorization_status.value
    row.revision = quote.revision
    row.rejection_reason = quote.rejection_reason
    row.subtotal = totals.subtotal
    row.discount_amount = totals.discount_amount
    row.total_value = totals.total_value
    row.below_minimum = totals.below_minimum

    existing = {item.id: item for item in row.items}
    wanted = {line.id for line in quote.lines}
    for item in list(row.items):
        if item.id not in wanted:
            row.items.remove(item)

    for line in quote.lines:
        item = existing.get(line.id)
        if item is None:
            row.items.append(_new_item_row(line))
            continue
        item.unit_price = line.unit_price
        item.quantity = line.quantity
        item.surcharge = line.surcharge
        item.position = line.position
        item.total_price = line.total_price
    return totals


def record_transition(row: SalesQuote, result: TransitionResult, actor_id: Optional[str]) -> Optional[AuthorizationEvent]:
    """Persist an applied gate result and append its audit event."""
    if not result.applied:
        return None
    sync_quote_row(row, result.quote)

    if result.action == GateAction.ADMIN_APPROVE:
        row.authorized_by = actor_id
        row.authorized_at = datetime.now(timezone.utc)
    elif result.action == GateAction.ADMIN_REJECT:
        row.authorized_by = None
        row.authorized_at = None

    event = AuthorizationEvent(
        id=gen_uuid(),
        action=result.action.value,
        actor_id=actor_id,
        from_lifecycle=result.previous.lifecycle_status.value,
        to_lifecycle=result.quote.lifecycle_status.value,
        from_authorization=result.previous.authorization_status.value,
        to_authorization=result.quote.authorization_status.value,
        revision=result.quote.revision,
        reason=result.reason,
    )
    row.events.append(event)
    logger.info(
        f"Quote {row.id} {result.action.value} by {actor_id}: "
        f"{event.from_lifecycle} -> {event.to_lifecycle}",
        extra={"quote_id": row.id},
    )
    return event


# ─── Serialization ───────────────────────────────────────────────────────────

def line_to_dict(line: QuoteLineItem) -> dict:
    return {
        "id": line.id,
        "position": line.position,
        "product_id": line.product_id,
        "description": line.description,
        "cost_price": line.cost_price,
        "quantity": line.quantity,
        "unit_price": line.unit_price,
        "surcharge": line.surcharge,
        "minimum_unit_price": line.minimum_unit_price,
        "ideal_unit_price": line.ideal_unit_price,
        "margin_rate": line.margin_rate,
        "minimum_margin_rate": line.minimum_margin_rate,
        "total_price": line.total_price,
        "below_minimum": line.is_below_minimum,
        "shortfall_per_unit": line.shortfall_per_unit,
    }


def quote_to_dict(row: SalesQuote, quote: Optional[Quote] = None, include_cost: bool = True) -> dict:
    """Response body.  Clients get `include_cost=False` (no cost or floor data)."""
    quote = quote or quote_to_domain(row)
    totals = aggregate_quote(quote)
    lines = [line_to_dict(l) for l in quote.lines]
    if not include_cost:
        hidden = ("cost_price", "minimum_unit_price", "ideal_unit_price", "margin_rate",
                  "minimum_margin_rate", "below_minimum", "shortfall_per_unit")
        lines = [{k: v for k, v in l.items() if k not in hidden} for l in lines]
    body = {
        "id": row.id,
        "quote_number": row.quote_number,
        "title": row.title,
        "vendor_id": row.vendor_id,
        "client_id": row.client_id,
        "discount_kind": quote.discount_kind.value,
        "discount_value": quote.discount_value,
        "lifecycle_status": quote.lifecycle_status.value,
        "authorization_status": quote.authorization_status.value,
        "revision": quote.revision,
        "rejection_reason": quote.rejection_reason,
        "authorized_by": row.authorized_by,
        "authorized_at": row.authorized_at.isoformat() if row.authorized_at else None,
        "version": row.version,
        "items": lines,
        **totals.to_dict(),
    }
    if not include_cost:
        body.pop("below_minimum_line_ids", None)
        body.pop("below_minimum", None)
    return body


def event_to_dict(event: AuthorizationEvent) -> dict:
    return {
        "id": event.id,
        "action": event.action,
        "actor_id": event.actor_id,
        "from_lifecycle": event.from_lifecycle,
        "to_lifecycle": event.to_lifecycle,
        "from_authorization": event.from_authorization,
        "to_authorization": event.to_authorization,
        "revision": event.revision,
        "reason": event.reason,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }


def awaiting_summary(row: SalesQuote) -> dict:
    """Queue entry for the admin authorization screen."""
    quote = quote_to_domain(row)
    totals = aggregate_quote(quote)
    return {
        "id": row.id,
        "quote_number": row.quote_number,
        "title": row.title,
        "vendor_id": row.vendor_id,
        "revision": quote.revision,
        "total_value": totals.total_value,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "below_minimum_lines": [
            {
                "id": line.id,
                "description": line.description,
                "unit_price": line.unit_price,
                "minimum_unit_price": line.minimum_unit_price,
                "shortfall_per_unit": line.shortfall_per_unit,
            }
            for line in quote.lines
            if line.is_below_minimum
        ],
    }


# ─── Async loaders ───────────────────────────────────────────────────────────

async def load_quote(db: AsyncSession, quote_id: str) -> Optional[SalesQuote]:
    result = await db.execute(
        select(SalesQuote).where(SalesQuote.id == quote_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_awaiting_authorization(db: AsyncSession) -> List[SalesQuote]:
    result = await db.execute(
        select(SalesQuote)
        .where(SalesQuote.lifecycle_status == LifecycleStatus.AWAITING_AUTHORIZATION.value)
        .order_by(SalesQuote.updated_at)
    )
    return list(result.scalars().all())


def next_quote_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Q-{now:%Y%m%d}-{gen_uuid()[:8].upper()}"
