"""
Request payloads for the pricing and quote endpoints.

Schema validation at the API boundary; the engine re-validates the
critical parts (rate sums, non-negative totals) on its own.
"""
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from margindesk.services.pricing_models import AuthorizationStatus, DiscountKind, LifecycleStatus


# ─── Rate configuration ──────────────────────────────────────────────────────

class RateConfigurationUpdate(BaseModel):
    tax_rate: Optional[Decimal] = Field(None, ge=0, lt=1)
    commission_rate: Optional[Decimal] = Field(None, ge=0, lt=1)
    cash_discount_rate: Optional[Decimal] = Field(None, ge=0, lt=1)
    fallback_minimum_margin_rate: Optional[Decimal] = Field(None, ge=0, lt=1)


class MarginTierIn(BaseModel):
    min_revenue: Decimal = Field(Decimal("0"), ge=0)
    max_revenue: Optional[Decimal] = Field(None, gt=0)     # exclusive; null = open-ended
    margin_rate: Decimal = Field(..., ge=0, lt=1)
    minimum_margin_rate: Decimal = Field(..., ge=0, lt=1)
    display_order: int = 0

    model_config = {"json_schema_extra": {
        "example": {
            "min_revenue": "0",
            "max_revenue": "5000",
            "margin_rate": "0.28",
            "minimum_margin_rate": "0.20",
            "display_order": 1,
        }
    }}


class CalculatePriceRequest(BaseModel):
    cost: Decimal = Field(..., gt=0)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    revenue: Decimal = Field(Decimal("0"), ge=0)


# ─── Quotes ──────────────────────────────────────────────────────────────────

class QuoteCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    client_id: Optional[str] = None
    discount_kind: DiscountKind = DiscountKind.PERCENTAGE
    discount_value: Decimal = Field(Decimal("0"), ge=0)
    shipping_cost: Decimal = Field(Decimal("0"), ge=0)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("title must not be blank")
        return trimmed


class QuoteTermsUpdate(BaseModel):
    discount_kind: Optional[DiscountKind] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    shipping_cost: Optional[Decimal] = Field(None, ge=0)
    expected_version: Optional[int] = None


class LineItemCreate(BaseModel):
    product_id: Optional[str] = None
    description: str = ""
    cost: Decimal = Field(..., gt=0)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    surcharge: Decimal = Field(Decimal("0"), ge=0)     # per-unit customization
    revenue: Optional[Decimal] = Field(None, ge=0)     # overrides quote-derived revenue for tier selection
    expected_version: Optional[int] = None


class LineItemUpdate(BaseModel):
    unit_price: Optional[Decimal] = Field(None, ge=0)
    quantity: Optional[Decimal] = Field(None, gt=0)
    surcharge: Optional[Decimal] = Field(None, ge=0)
    expected_version: Optional[int] = None


class TransitionRequest(BaseModel):
    """Optional precondition: the state the caller saw when it clicked."""
    expected_lifecycle: Optional[LifecycleStatus] = None
    expected_authorization: Optional[AuthorizationStatus] = None


class AdminRejectRequest(TransitionRequest):
    reason: Optional[str] = Field(None, max_length=2000)
