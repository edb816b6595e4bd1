"""ORM Models for MarginDesk (SQLAlchemy 2.0)"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, DateTime, ForeignKey, Index, text
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from margindesk.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── AUTH (managed externally; read by the auth guards) ───────────────────────
class Role(Base):
    __tablename__ = "roles"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)  # Admin | Vendor | Client
    users: Mapped[list["User"]] = relationship("User", back_populates="role")


class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    role_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("roles.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    role: Mapped[Optional["Role"]] = relationship("Role", back_populates="users")


# ── PRICING SETTINGS (single active row) ─────────────────────────────────────
class PricingSettings(Base):
    __tablename__ = "pricing_settings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # All rates are fractions of the sale price: 0.0900 == 9 %
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False, default=Decimal("0.0900"))
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False, default=Decimal("0.1500"))
    cash_discount_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False, default=Decimal("0.0500"))
    fallback_minimum_margin_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 4), default=Decimal("0.2000")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    updated_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("users.id"))
    tiers: Mapped[list["MarginBand"]] = relationship(
        "MarginBand",
        back_populates="settings",
        cascade="all, delete-orphan",
        order_by="MarginBand.min_revenue",
        lazy="selectin",
    )

    # At most one active row; a concurrent first-read seed loses on this index
    __table_args__ = (
        Index("uq_pricing_settings_one_active", "is_active", unique=True, postgresql_where=text("is_active")),
    )


class MarginBand(Base):
    __tablename__ = "margin_tiers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    settings_id: Mapped[int] = mapped_column(Integer, ForeignKey("pricing_settings.id"), nullable=False)
    min_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    max_revenue: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))   # exclusive; NULL = open-ended
    margin_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    minimum_margin_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    settings: Mapped["PricingSettings"] = relationship("PricingSettings", back_populates="tiers")


# ── QUOTES ────────────────────────────────────────────────────────────────────
class SalesQuote(Base):
    __tablename__ = "quotes"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    quote_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    vendor_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("users.id"), nullable=False)
    client_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("users.id"))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    discount_kind: Mapped[str] = mapped_column(String(20), default="percentage")   # percentage | flat
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    below_minimum: Mapped[bool] = mapped_column(Boolean, default=False)
    # Authorization Gate lifecycle:
    # draft → sent | awaiting_authorization → sent → approved | rejected; approved → converted
    lifecycle_status: Mapped[str] = mapped_column(String(30), default="draft", index=True)
    authorization_status: Mapped[str] = mapped_column(String(20), default="none")
    revision: Mapped[int] = mapped_column(Integer, default=0)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    authorized_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    authorized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    items: Mapped[list["SalesQuoteItem"]] = relationship(
        "SalesQuoteItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="SalesQuoteItem.position",
        lazy="selectin",
    )
    events: Mapped[list["AuthorizationEvent"]] = relationship(
        "AuthorizationEvent",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="AuthorizationEvent.created_at",
        lazy="selectin",
    )

    # Optimistic concurrency: UPDATE ... WHERE version = :seen
    __mapper_args__ = {"version_id_col": version}


class SalesQuoteItem(Base):
    __tablename__ = "quote_line_items"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    quote_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("quotes.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    cost_price: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    surcharge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    # Frozen at creation; never recomputed when rates or tiers change
    minimum_unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    ideal_unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    margin_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    minimum_margin_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    quote: Mapped["SalesQuote"] = relationship("SalesQuote", back_populates="items")


class AuthorizationEvent(Base):
    """Append-only audit of applied gate transitions."""
    __tablename__ = "authorization_events"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    quote_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("quotes.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    from_lifecycle: Mapped[str] = mapped_column(String(30), nullable=False)
    to_lifecycle: Mapped[str] = mapped_column(String(30), nullable=False)
    from_authorization: Mapped[str] = mapped_column(String(20), nullable=False)
    to_authorization: Mapped[str] = mapped_column(String(20), nullable=False)
    revision: Mapped[int] = mapped_column(Integer, default=0)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    quote: Mapped["SalesQuote"] = relationship("SalesQuote", back_populates="events")

    __table_args__ = (Index("ix_authorization_events_quote", "quote_id", "created_at"),)
