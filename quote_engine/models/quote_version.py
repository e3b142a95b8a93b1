#quote_engine/models/quote_version.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quote_engine.db.base import Base, JSONType
from quote_engine.models.quote import Money, Rate, _now


class QuoteVersion(Base):
    """
    Immutable snapshot of a quote taken right before a forced edit.
    - Append-only (never UPDATE / DELETE)
    - version_number starts at 1 and increments by 1 per quote
    """
    __tablename__ = "quote_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Snapshot of the quote header
    quote_number: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    terms_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    # Why / who
    change_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    line_items: Mapped[List["QuoteLineItemVersion"]] = relationship(
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="QuoteLineItemVersion.line_number",
    )

    __table_args__ = (
        UniqueConstraint("quote_id", "version_number", name="uq_quote_version_number"),
        Index("ix_quote_versions_quote", "quote_id"),
    )


class QuoteLineItemVersion(Base):
    __tablename__ = "quote_line_item_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    quote_version_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("quote_versions.id", ondelete="CASCADE"), nullable=False
    )
    original_line_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    tax_inclusive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tax_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    discount_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    percentage_discount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    fixed_discount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    service_category_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    rate_card_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    pricing_source: Mapped[str] = mapped_column(String(16), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    version: Mapped[QuoteVersion] = relationship(back_populates="line_items")

    __table_args__ = (
        Index("ix_line_item_versions_version", "quote_version_id"),
    )


def _refuse_mutation(mapper, connection, target):
    raise RuntimeError(f"{type(target).__name__} rows are immutable.")


for _cls in (QuoteVersion, QuoteLineItemVersion):
    event.listen(_cls, "before_update", _refuse_mutation)
    event.listen(_cls, "before_delete", _refuse_mutation)
