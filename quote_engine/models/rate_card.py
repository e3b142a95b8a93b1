#quote_engine/models/rate_card.py
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
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quote_engine.db.base import Base, JSONType
from quote_engine.models.quote import _now


class RateCard(Base):
    """
    Dated pricing catalog of one organization.
    Selection for a date: active, inside [effective_from, effective_until],
    default cards first, then most recent effective_from.
    """
    __tablename__ = "rate_cards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(32), nullable=False, default="1")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    items: Mapped[List["RateCardItem"]] = relationship(
        back_populates="rate_card",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_rate_cards_org_active", "organization_id", "is_active"),
        Index("ix_rate_cards_org_effective", "organization_id", "effective_from"),
    )


class RateCardItem(Base):
    __tablename__ = "rate_card_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rate_card_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rate_cards.id", ondelete="CASCADE"), nullable=False
    )

    service_category_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    item_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="hour")
    base_rate: Mapped[Decimal] = mapped_column(Numeric(15, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    tax_class: Mapped[str] = mapped_column(String(32), nullable=False, default="standard")

    effective_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    effective_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    metadata_json: Mapped[Dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    rate_card: Mapped[RateCard] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_rate_card_items_card", "rate_card_id"),
        Index("ix_rate_card_items_card_code", "rate_card_id", "item_code"),
        Index("ix_rate_card_items_card_category", "rate_card_id", "service_category_id"),
    )
