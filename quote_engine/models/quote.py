#quote_engine/models/quote.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quote_engine.db.base import Base, JSONType


def _now():
    return datetime.now(timezone.utc)


# Amounts keep four places so three-decimal currencies round-trip exactly
Money = Numeric(18, 4)
Rate = Numeric(10, 6)


class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quote_number: Mapped[str] = mapped_column(String(32), nullable=False)

    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="project")

    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("1"))

    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # quote-level discount (applied on top of the summed line amounts)
    discount_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    terms_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    metadata_json: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    line_items: Mapped[List["QuoteLineItem"]] = relationship(
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteLineItem.line_number",
    )

    __table_args__ = (
        # live quote numbers are unique per org; a soft-deleted number may be reissued
        Index(
            "uq_quote_number_org",
            "organization_id",
            "quote_number",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_quotes_org_status", "organization_id", "status"),
        Index("ix_quotes_org_created", "organization_id", "created_at"),
        Index("ix_quotes_org_customer", "organization_id", "customer_id"),
    )


class QuoteLineItem(Base):
    __tablename__ = "quote_line_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="service")
    sku: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="hour")

    tax_inclusive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tax_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("0"))

    discount_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    percentage_discount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    fixed_discount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    service_category_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    rate_card_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    pricing_source: Mapped[str] = mapped_column(String(16), nullable=False, default="rate_card")

    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    metadata_json: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    quote: Mapped[Quote] = relationship(back_populates="line_items")

    __table_args__ = (
        UniqueConstraint("quote_id", "line_number", name="uq_line_number_quote"),
        CheckConstraint(
            "service_category_id IS NOT NULL OR rate_card_id IS NOT NULL",
            name="ck_line_item_pricing_ref",
        ),
        Index("ix_line_items_quote", "quote_id"),
    )
