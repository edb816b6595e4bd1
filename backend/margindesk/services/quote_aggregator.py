"""
Quote Aggregator: line items, totals, discount, shipping, below-minimum flag.

Also owns draft-only line editing: a new line snapshots its minimum unit price
from the rates/tiers passed in at that moment, and no later call ever
recomputes it.  Totals are always recomputed from the line set, never
accumulated, so re-running aggregation is idempotent.
"""
import logging
import uuid
from dataclasses import replace
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from margindesk.services.errors import ValidationError
from margindesk.services.money import (
    ZERO, Number, HUNDRED, percent_of, round_money, round_quantity, sum_money, to_decimal,
)
from margindesk.services.price_calculator import calculate_price
from margindesk.services.pricing_models import (
    AuthorizationStatus,
    DiscountKind,
    MarginTier,
    Quote,
    QuoteLineItem,
    QuoteTotals,
    RateConfiguration,
)

logger = logging.getLogger("margindesk-quotes")


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def validate_terms(
    discount_kind,
    discount_value: Number,
    shipping_cost: Number,
) -> Tuple[DiscountKind, Decimal, Decimal]:
    try:
        kind = DiscountKind(discount_kind)
    except ValueError as exc:
        raise ValidationError(
            f"discount_kind must be one of {[k.value for k in DiscountKind]}", field="discount_kind"
        ) from exc
    value = round_money(to_decimal(discount_value, "discount_value"))
    shipping = round_money(to_decimal(shipping_cost, "shipping_cost"))
    if value < ZERO:
        raise ValidationError("discount_value must be >= 0", field="discount_value")
    if kind == DiscountKind.PERCENTAGE and value > HUNDRED:
        raise ValidationError("percentage discount cannot exceed 100", field="discount_value")
    if shipping < ZERO:
        raise ValidationError("shipping_cost must be >= 0", field="shipping_cost")
    return kind, value, shipping


def aggregate_quote(quote: Quote) -> QuoteTotals:
    """
    subtotal       = sum(line.total_price)
    discount       = subtotal * pct / 100  |  flat value
    total_value    = subtotal - discount + shipping   (ValidationError if < 0)
    below_minimum  = any(line.unit_price < line.minimum_unit_price)
    """
    kind, value, shipping = validate_terms(quote.discount_kind, quote.discount_value, quote.shipping_cost)

    subtotal = sum_money(line.total_price for line in quote.lines)
    if kind == DiscountKind.PERCENTAGE:
        discount = round_money(percent_of(subtotal, value))
    else:
        discount = round_money(value)
    shipping = round_money(shipping)

    total = subtotal - discount + shipping
    if total < ZERO:
        raise ValidationError(
            f"Discount {discount} exceeds subtotal plus shipping; total would be {total}",
            field="discount_value",
        )

    below = tuple(line.id for line in quote.lines if line.is_below_minimum)
    return QuoteTotals(
        subtotal=round_money(subtotal),
        discount_amount=discount,
        shipping_cost=shipping,
        total_value=round_money(total),
        below_minimum=bool(below),
        below_minimum_line_ids=below,
    )


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------

def _validate_line_values(quantity: Decimal, unit_price: Decimal, surcharge: Decimal) -> None:
    if quantity <= ZERO:
        raise ValidationError("quantity must be greater than zero", field="quantity")
    if unit_price < ZERO:
        raise ValidationError("unit_price must be >= 0", field="unit_price")
    if surcharge < ZERO:
        raise ValidationError("surcharge must be >= 0", field="surcharge")


def build_line_item(
    cost: Number,
    quantity: Number,
    unit_price: Number,
    rates: RateConfiguration,
    tiers: Iterable[MarginTier],
    *,
    current_subtotal: Decimal = ZERO,
    revenue: Optional[Number] = None,
    surcharge: Number = 0,
    product_id: Optional[str] = None,
    description: str = "",
) -> QuoteLineItem:
    """
    Price a new line and freeze its minimum unit price.

    The tier is resolved against `revenue`, defaulting to the quote's current
    subtotal plus this line's own value.
    """
    # Stored precision: prices Numeric(12,2), quantity Numeric(12,3)
    qty = round_quantity(to_decimal(quantity, "quantity"))
    price = round_money(to_decimal(unit_price, "unit_price"))
    extra = round_money(to_decimal(surcharge, "surcharge"))
    _validate_line_values(qty, price, extra)

    if revenue is None:
        rev = current_subtotal + qty * (price + extra)
    else:
        rev = to_decimal(revenue, "revenue")

    calc = calculate_price(cost, qty, rev, rates, tiers)
    return QuoteLineItem(
        cost_price=calc.cost,
        quantity=qty,
        unit_price=price,
        minimum_unit_price=calc.minimum_unit_price,
        ideal_unit_price=calc.ideal_unit_price,
        margin_rate=calc.margin_rate,
        minimum_margin_rate=calc.minimum_margin_rate,
        surcharge=extra,
        product_id=product_id,
        description=description,
    )


def _ensure_editable(quote: Quote) -> None:
    if not quote.is_editable:
        raise ValidationError(
            f"Quote {quote.id} is '{quote.lifecycle_status.value}'; line items can only change in draft",
            field="lifecycle_status",
        )


def _with_lines(quote: Quote, lines: Tuple[QuoteLineItem, ...]) -> Quote:
    """Swap the line set; drop any authorization when the below-minimum flag flips."""
    updated = quote.with_changes(lines=lines)
    if updated.below_minimum != quote.below_minimum and quote.authorization_status != AuthorizationStatus.NONE:
        logger.info(
            f"Quote {quote.id}: below-minimum changed to {updated.below_minimum}; "
            f"authorization reset from '{quote.authorization_status.value}'"
        )
        updated = updated.with_changes(authorization_status=AuthorizationStatus.NONE)
    aggregate_quote(updated)
    return updated


def _find_line(quote: Quote, line_id: str) -> QuoteLineItem:
    for line in quote.lines:
        if line.id == line_id:
            return line
    raise ValidationError(f"Line item {line_id} not found on quote {quote.id}", field="line_id")


def add_line_item(quote: Quote, line: QuoteLineItem) -> Quote:
    _ensure_editable(quote)
    position = max((l.position for l in quote.lines), default=-1) + 1
    line = replace(line, id=line.id or str(uuid.uuid4()), position=position)
    return _with_lines(quote, quote.lines + (line,))


def update_line_item(
    quote: Quote,
    line_id: str,
    *,
    unit_price: Optional[Number] = None,
    quantity: Optional[Number] = None,
    surcharge: Optional[Number] = None,
) -> Quote:
    """Change vendor-controlled fields.  The frozen minimum is never touched."""
    _ensure_editable(quote)
    current = _find_line(quote, line_id)
    changed = replace(
        current,
        unit_price=round_money(to_decimal(unit_price, "unit_price")) if unit_price is not None else current.unit_price,
        quantity=round_quantity(to_decimal(quantity, "quantity")) if quantity is not None else current.quantity,
        surcharge=round_money(to_decimal(surcharge, "surcharge")) if surcharge is not None else current.surcharge,
    )
    _validate_line_values(changed.quantity, changed.unit_price, changed.surcharge)
    lines = tuple(changed if l.id == line_id else l for l in quote.lines)
    return _with_lines(quote, lines)


def remove_line_item(quote: Quote, line_id: str) -> Quote:
    _ensure_editable(quote)
    _find_line(quote, line_id)
    return _with_lines(quote, tuple(l for l in quote.lines if l.id != line_id))


def update_terms(
    quote: Quote,
    *,
    discount_kind=None,
    discount_value: Optional[Number] = None,
    shipping_cost: Optional[Number] = None,
) -> Quote:
    _ensure_editable(quote)
    kind, value, shipping = validate_terms(
        discount_kind if discount_kind is not None else quote.discount_kind,
        discount_value if discount_value is not None else quote.discount_value,
        shipping_cost if shipping_cost is not None else quote.shipping_cost,
    )
    updated = quote.with_changes(discount_kind=kind, discount_value=value, shipping_cost=shipping)
    aggregate_quote(updated)
    return updated
