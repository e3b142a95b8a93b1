from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import Field, model_validator

from quote_engine.core.clock import as_utc, iso
from quote_engine.models.rate_card import RateCard, RateCardItem
from quote_engine.schemas.common import CamelModel, CurrencyCode, Metadata, dec


class RateCardCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    version: str = Field(default="1", max_length=32)
    description: Optional[str] = Field(default=None, max_length=5000)
    currency: CurrencyCode
    effective_from: datetime
    effective_until: Optional[datetime] = None
    is_default: bool = False
    is_active: bool = True

    @model_validator(mode="after")
    def _window(self):
        if self.effective_until is not None and as_utc(self.effective_until) < as_utc(self.effective_from):
            raise ValueError("effectiveUntil must not be before effectiveFrom")
        return self


class RateCardUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    version: Optional[str] = Field(default=None, max_length=32)
    description: Optional[str] = Field(default=None, max_length=5000)
    currency: Optional[CurrencyCode] = None
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None


class RateCardItemCreate(CamelModel):
    service_category_id: str = Field(..., min_length=1, max_length=64)
    role_id: Optional[str] = Field(default=None, max_length=64)
    item_code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=2000)
    unit: str = Field(default="hour", max_length=20)
    base_rate: Decimal = Field(..., ge=0)
    # defaults to the card's currency
    currency: Optional[CurrencyCode] = None
    tax_class: str = Field(default="standard", max_length=32)
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
    is_active: bool = True
    metadata: Metadata = Field(default_factory=dict)


class RateCardItemUpdate(CamelModel):
    service_category_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    role_id: Optional[str] = Field(default=None, max_length=64)
    item_code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=2000)
    unit: Optional[str] = Field(default=None, max_length=20)
    base_rate: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[CurrencyCode] = None
    tax_class: Optional[str] = Field(default=None, max_length=32)
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    metadata: Optional[Metadata] = None


def to_columns(payload: CamelModel, *, partial: bool) -> Dict[str, Any]:
    """
    Schema -> model column values. `metadata` maps to the metadata_json column;
    datetimes are normalized to UTC.
    """
    data = payload.model_dump(exclude_unset=partial)
    if "metadata" in data:
        data["metadata_json"] = data.pop("metadata")
    for k, v in list(data.items()):
        if isinstance(v, datetime):
            data[k] = as_utc(v)
    return data


def serialize_rate_card(card: RateCard) -> Dict[str, Any]:
    return {
        "id": str(card.id),
        "organizationId": card.organization_id,
        "name": card.name,
        "version": card.version,
        "description": card.description,
        "currency": card.currency,
        "effectiveFrom": iso(card.effective_from),
        "effectiveUntil": iso(card.effective_until),
        "isDefault": bool(card.is_default),
        "isActive": bool(card.is_active),
        "createdBy": card.created_by,
        "createdAt": iso(card.created_at),
        "updatedAt": iso(card.updated_at),
    }


def serialize_rate_card_item(item: RateCardItem) -> Dict[str, Any]:
    return {
        "id": str(item.id),
        "rateCardId": str(item.rate_card_id),
        "serviceCategoryId": item.service_category_id,
        "roleId": item.role_id,
        "itemCode": item.item_code,
        "description": item.description,
        "unit": item.unit,
        "baseRate": dec(item.base_rate),
        "currency": item.currency,
        "taxClass": item.tax_class,
        "effectiveFrom": iso(item.effective_from),
        "effectiveUntil": iso(item.effective_until),
        "isActive": bool(item.is_active),
        "metadata": dict(item.metadata_json or {}),
        "createdAt": iso(item.created_at),
        "updatedAt": iso(item.updated_at),
    }
