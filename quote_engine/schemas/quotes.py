from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field, model_validator

from quote_engine.core.clock import as_utc, iso
from quote_engine.models.enums import DiscountType, LineItemType, QuoteStatus, QuoteType
from quote_engine.models.quote import Quote, QuoteLineItem
from quote_engine.models.quote_version import QuoteVersion
from quote_engine.schemas.common import CamelModel, CurrencyCode, Metadata, dec, money


class LineItemInput(CamelModel):
    type: LineItemType = LineItemType.service
    sku: Optional[str] = Field(default=None, max_length=50)
    description: str = Field(..., min_length=1, max_length=2000)
    quantity: Decimal = Field(..., gt=0)

    # honoured only for callers allowed to override prices
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    unit: Optional[str] = Field(default=None, max_length=20)

    tax_inclusive: bool = False
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)

    discount_type: Optional[DiscountType] = None
    discount_value: Decimal = Field(default=Decimal("0"), ge=0)
    percentage_discount: Optional[Decimal] = Field(default=None, ge=0, le=100)
    fixed_discount: Optional[Decimal] = Field(default=None, ge=0)

    service_category_id: Optional[str] = Field(default=None, max_length=64)
    rate_card_id: Optional[str] = Field(default=None, max_length=64)

    metadata: Metadata = Field(default_factory=dict)

    @model_validator(mode="after")
    def _percentage_bounds(self):
        if self.discount_type == DiscountType.percentage and self.discount_value > 100:
            raise ValueError("percentage discountValue must be between 0 and 100")
        return self


class QuoteCreate(CamelModel):
    customer_id: str = Field(..., min_length=1, max_length=64)
    project_id: Optional[str] = Field(default=None, max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    type: QuoteType = QuoteType.project

    valid_from: datetime
    valid_until: datetime

    currency: CurrencyCode
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)

    discount_type: Optional[DiscountType] = None
    discount_value: Decimal = Field(default=Decimal("0"), ge=0)

    terms_conditions: Optional[str] = Field(default=None, max_length=10000)
    notes: Optional[str] = Field(default=None, max_length=5000)
    internal_notes: Optional[str] = Field(default=None, max_length=5000)
    expires_at: Optional[datetime] = None

    metadata: Metadata = Field(default_factory=dict)
    line_items: List[LineItemInput] = Field(..., min_length=1, max_length=500)

    @model_validator(mode="after")
    def _window(self):
        if as_utc(self.valid_until) < as_utc(self.valid_from):
            raise ValueError("validUntil must not be before validFrom")
        return self


class QuoteUpdate(CamelModel):
    customer_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    project_id: Optional[str] = Field(default=None, max_length=64)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    type: Optional[QuoteType] = None

    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    currency: Optional[CurrencyCode] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)

    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)

    terms_conditions: Optional[str] = Field(default=None, max_length=10000)
    notes: Optional[str] = Field(default=None, max_length=5000)
    internal_notes: Optional[str] = Field(default=None, max_length=5000)
    expires_at: Optional[datetime] = None

    metadata: Optional[Metadata] = None
    line_items: Optional[List[LineItemInput]] = Field(default=None, min_length=1, max_length=500)

    # recorded on the version snapshot when the edit is a forced one
    change_reason: Optional[str] = Field(default=None, max_length=2000)


class StatusTransitionRequest(CamelModel):
    status: QuoteStatus
    notes: Optional[str] = Field(default=None, max_length=2000)


class CalculateRequest(CamelModel):
    """Dry run: resolve prices and compute totals, nothing is stored."""

    currency: CurrencyCode
    discount_type: Optional[DiscountType] = None
    discount_value: Decimal = Field(default=Decimal("0"), ge=0)
    effective_date: Optional[datetime] = None
    line_items: List[LineItemInput] = Field(..., min_length=1, max_length=500)


# ---------------------------
# Serialization (JSON-ready dicts)
# ---------------------------

def _line_common(li, currency: str) -> Dict[str, Any]:
    return {
        "lineNumber": li.line_number,
        "type": li.type,
        "sku": li.sku,
        "description": li.description,
        "quantity": dec(li.quantity),
        "unitPrice": dec(li.unit_price),
        "unitCost": dec(li.unit_cost),
        "unit": li.unit,
        "currency": currency,
        "taxInclusive": bool(li.tax_inclusive),
        "taxRate": dec(li.tax_rate),
        "discountType": li.discount_type,
        "discountValue": dec(li.discount_value),
        "percentageDiscount": dec(li.percentage_discount),
        "fixedDiscount": dec(li.fixed_discount),
        "serviceCategoryId": li.service_category_id,
        "rateCardId": li.rate_card_id,
        "pricingSource": li.pricing_source,
        "subtotal": money(li.subtotal, currency),
        "discountAmount": money(li.discount_amount, currency),
        "taxAmount": money(li.tax_amount, currency),
        "totalAmount": money(li.total_amount, currency),
        "metadata": dict(li.metadata_json or {}),
    }


def _quote_common(q, include_internal: bool) -> Dict[str, Any]:
    body = {
        "quoteNumber": q.quote_number,
        "customerId": q.customer_id,
        "projectId": q.project_id,
        "title": q.title,
        "description": q.description,
        "status": q.status,
        "type": q.type,
        "validFrom": iso(q.valid_from),
        "validUntil": iso(q.valid_until),
        "currency": q.currency,
        "exchangeRate": dec(q.exchange_rate),
        "subtotal": money(q.subtotal, q.currency),
        "discountAmount": money(q.discount_amount, q.currency),
        "taxAmount": money(q.tax_amount, q.currency),
        "totalAmount": money(q.total_amount, q.currency),
        "discountType": q.discount_type,
        "discountValue": dec(q.discount_value),
        "termsConditions": q.terms_conditions,
        "notes": q.notes,
        "metadata": dict(q.metadata_json or {}),
    }
    if include_internal:
        body["internalNotes"] = q.internal_notes
    return body


def serialize_line_item(li: QuoteLineItem, currency: str) -> Dict[str, Any]:
    return {"id": str(li.id), **_line_common(li, currency)}


def serialize_quote(q: Quote, *, include_internal: bool = True) -> Dict[str, Any]:
    return {
        "id": str(q.id),
        "organizationId": q.organization_id,
        **_quote_common(q, include_internal),
        "createdBy": q.created_by,
        "approvedBy": q.approved_by,
        "approvedAt": iso(q.approved_at),
        "sentAt": iso(q.sent_at),
        "acceptedAt": iso(q.accepted_at),
        "expiresAt": iso(q.expires_at),
        "createdAt": iso(q.created_at),
        "updatedAt": iso(q.updated_at),
        "lineItems": [serialize_line_item(li, q.currency) for li in q.line_items],
    }


def serialize_version_summary(v: QuoteVersion) -> Dict[str, Any]:
    return {
        "id": str(v.id),
        "quoteId": str(v.quote_id),
        "versionNumber": v.version_number,
        "status": v.status,
        "totalAmount": money(v.total_amount, v.currency),
        "currency": v.currency,
        "changeReason": v.change_reason,
        "createdBy": v.created_by,
        "createdAt": iso(v.created_at),
    }


def serialize_version(v: QuoteVersion) -> Dict[str, Any]:
    return {
        **serialize_version_summary(v),
        "snapshot": _quote_common(v, include_internal=True),
        "lineItems": [
            {
                "id": str(li.id),
                "originalLineItemId": str(li.original_line_item_id) if li.original_line_item_id else None,
                **_line_common(li, v.currency),
            }
            for li in v.line_items
        ],
    }

