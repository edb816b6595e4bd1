"""
Domain types for the pricing engine.

Plain frozen dataclasses: the calculator, aggregator and gate take these as
explicit arguments and return new instances, so a snapshot fetched before an
admin edits rates keeps producing the same numbers.
All rates are fractions of the final sale price (0.28 == 28 %).
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from margindesk.services.money import ZERO, rate_to_percent, round_money


class LifecycleStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONVERTED = "converted"


class AuthorizationStatus(str, Enum):
    NONE = "none"
    AWAITING = "awaiting"
    APPROVED = "approved"
    REJECTED = "rejected"   # accepted on input; admin rejection clears the quote back to NONE


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


# States a client may see.  awaiting_authorization and draft stay vendor/admin only.
CLIENT_VISIBLE_STATES = frozenset({
    LifecycleStatus.SENT,
    LifecycleStatus.APPROVED,
    LifecycleStatus.REJECTED,
    LifecycleStatus.CONVERTED,
})

TERMINAL_STATES = frozenset({LifecycleStatus.REJECTED, LifecycleStatus.CONVERTED})


@dataclass(frozen=True)
class RateConfiguration:
    tax_rate: Decimal
    commission_rate: Decimal
    cash_discount_rate: Decimal = ZERO
    fallback_minimum_margin_rate: Optional[Decimal] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class MarginTier:
    min_revenue: Decimal
    max_revenue: Optional[Decimal]   # exclusive; None == unbounded
    margin_rate: Decimal
    minimum_margin_rate: Decimal
    display_order: int = 0
    id: Optional[int] = None
    configuration_id: Optional[int] = None

    @property
    def is_open_ended(self) -> bool:
        return self.max_revenue is None

    def matches(self, revenue: Decimal) -> bool:
        if revenue < self.min_revenue:
            return False
        return self.max_revenue is None or revenue < self.max_revenue


@dataclass(frozen=True)
class ResolvedTier:
    margin_rate: Decimal
    minimum_margin_rate: Decimal
    tier: Optional[MarginTier] = None
    source: str = "tier"        # "tier" | "catch_all" | "fallback"

    @property
    def tier_id(self) -> Optional[int]:
        return self.tier.id if self.tier is not None else None


@dataclass(frozen=True)
class CalculationResult:
    """Ephemeral output of one price preview.  Exact values are unrounded."""
    cost: Decimal
    quantity: Decimal
    revenue: Decimal
    tax_rate: Decimal
    commission_rate: Decimal
    cash_discount_rate: Decimal
    resolved: ResolvedTier
    ideal_unit_price_exact: Decimal
    minimum_unit_price_exact: Decimal

    @property
    def margin_rate(self) -> Decimal:
        return self.resolved.margin_rate

    @property
    def minimum_margin_rate(self) -> Decimal:
        return self.resolved.minimum_margin_rate

    @property
    def ideal_unit_price(self) -> Decimal:
        return round_money(self.ideal_unit_price_exact)

    @property
    def minimum_unit_price(self) -> Decimal:
        return round_money(self.minimum_unit_price_exact)

    @property
    def total_ideal_price(self) -> Decimal:
        return round_money(self.ideal_unit_price_exact * self.quantity)

    @property
    def total_minimum_price(self) -> Decimal:
        return round_money(self.minimum_unit_price_exact * self.quantity)

    @property
    def total_cost(self) -> Decimal:
        return round_money(self.cost * self.quantity)

    @property
    def cash_unit_price(self) -> Decimal:
        return round_money(self.ideal_unit_price_exact * (1 - self.cash_discount_rate))

    @property
    def total_cash_price(self) -> Decimal:
        return round_money(self.ideal_unit_price_exact * (1 - self.cash_discount_rate) * self.quantity)

    def to_dict(self) -> dict:
        return {
            "cost": self.cost,
            "quantity": self.quantity,
            "revenue": self.revenue,
            "total_cost": self.total_cost,
            "tax_rate": self.tax_rate,
            "commission_rate": self.commission_rate,
            "cash_discount_rate": self.cash_discount_rate,
            "margin_rate": self.margin_rate,
            "minimum_margin_rate": self.minimum_margin_rate,
            "margin_applied_pct": rate_to_percent(self.margin_rate),
            "minimum_margin_applied_pct": rate_to_percent(self.minimum_margin_rate),
            "tier_id": self.resolved.tier_id,
            "tier_source": self.resolved.source,
            "ideal_unit_price": self.ideal_unit_price,
            "minimum_unit_price": self.minimum_unit_price,
            "total_ideal_price": self.total_ideal_price,
            "total_minimum_price": self.total_minimum_price,
            "cash_unit_price": self.cash_unit_price,
            "total_cash_price": self.total_cash_price,
        }


@dataclass(frozen=True)
class QuoteLineItem:
    cost_price: Decimal
    quantity: Decimal
    unit_price: Decimal
    minimum_unit_price: Decimal          # frozen at creation
    ideal_unit_price: Decimal = ZERO     # frozen at creation, informational
    margin_rate: Decimal = ZERO
    minimum_margin_rate: Decimal = ZERO
    surcharge: Decimal = ZERO            # per-unit customization
    product_id: Optional[str] = None
    description: str = ""
    position: int = 0
    id: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        return round_money(self.quantity * (self.unit_price + self.surcharge))

    @property
    def is_below_minimum(self) -> bool:
        return self.unit_price < self.minimum_unit_price

    @property
    def shortfall_per_unit(self) -> Decimal:
        if not self.is_below_minimum:
            return ZERO
        return round_money(self.minimum_unit_price - self.unit_price)


@dataclass(frozen=True)
class Quote:
    lines: Tuple[QuoteLineItem, ...] = ()
    discount_kind: DiscountKind = DiscountKind.PERCENTAGE
    discount_value: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    lifecycle_status: LifecycleStatus = LifecycleStatus.DRAFT
    authorization_status: AuthorizationStatus = AuthorizationStatus.NONE
    revision: int = 0
    rejection_reason: Optional[str] = None
    id: Optional[str] = None
    vendor_id: Optional[str] = None
    client_id: Optional[str] = None

    @property
    def below_minimum(self) -> bool:
        return any(line.is_below_minimum for line in self.lines)

    @property
    def is_client_visible(self) -> bool:
        return self.lifecycle_status in CLIENT_VISIBLE_STATES

    @property
    def is_editable(self) -> bool:
        return self.lifecycle_status == LifecycleStatus.DRAFT

    def with_changes(self, **changes) -> "Quote":
        return replace(self, **changes)


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total_value: Decimal
    below_minimum: bool
    below_minimum_line_ids: Tuple[Optional[str], ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "shipping_cost": self.shipping_cost,
            "total_value": self.total_value,
            "below_minimum": self.below_minimum,
            "below_minimum_line_ids": list(self.below_minimum_line_ids),
        }
