from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from quote_engine.schemas.common import CamelModel, CurrencyCode, dec
from quote_engine.services.pricing_resolver import PricingResult


class PricingLine(CamelModel):
    line_number: int = Field(..., ge=1)
    description: str = Field(..., min_length=1, max_length=2000)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    sku: Optional[str] = Field(default=None, max_length=50)
    service_category_id: Optional[str] = Field(default=None, max_length=64)
    unit: Optional[str] = Field(default=None, max_length=20)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)


class PricingResolveRequest(CamelModel):
    line_items: List[PricingLine] = Field(..., min_length=1, max_length=500)
    effective_date: Optional[date] = None
    currency: Optional[CurrencyCode] = None


def serialize_pricing_result(result: PricingResult) -> Dict[str, Any]:
    return {
        "success": result.success,
        "results": [
            {
                "lineNumber": r.line_number,
                "unitPrice": dec(r.unit_price),
                "taxRate": dec(r.tax_rate),
                "unit": r.unit,
                "source": r.source,
                "matchedBy": r.matched_by,
                "rateCardId": r.rate_card_id,
                "rateCardItemId": r.rate_card_item_id,
                "serviceCategoryId": r.service_category_id,
                "currency": r.currency,
            }
            for r in result.results
        ],
        "errors": [e.as_dict() for e in result.errors],
    }
