#quote_engine/services/pricing_resolver.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from quote_engine.services.rate_card_service import RateCardService, item_in_effect

logger = logging.getLogger(__name__)

NO_ACTIVE_RATE_CARD = "No active rate card found for organization"
DESCRIPTION_MATCH_THRESHOLD = Decimal("0.5")

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class PricingLineInput:
    line_number: int
    description: str
    unit_price: Optional[Decimal] = None
    sku: Optional[str] = None
    service_category_id: Optional[str] = None
    unit: Optional[str] = None
    tax_rate: Optional[Decimal] = None


@dataclass
class ResolvedPrice:
    line_number: int
    unit_price: Decimal
    tax_rate: Decimal
    unit: str
    source: str  # explicit | rate_card
    matched_by: str  # explicit | item_code | service_category | description
    rate_card_id: Optional[str] = None
    rate_card_item_id: Optional[str] = None
    service_category_id: Optional[str] = None
    currency: Optional[str] = None


@dataclass
class PricingError:
    line_number: int
    description: str
    reason: str

    def as_dict(self) -> Dict[str, Any]:
        return {"lineNumber": self.line_number, "description": self.description, "reason": self.reason}


@dataclass
class PricingResult:
    results: List[ResolvedPrice] = field(default_factory=list)
    errors: List[PricingError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def for_line(self, line_number: int) -> Optional[ResolvedPrice]:
        for r in self.results:
            if r.line_number == line_number:
                return r
        return None


def _normalize(text: Optional[str]) -> str:
    return " ".join((text or "").lower().split())


def _tokens(text: Optional[str]) -> set:
    return set(_TOKEN_RE.findall((text or "").lower()))


def match_by_description(description: str, items: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    1) exact match on the normalized description
    2) otherwise the item with the best token overlap (Jaccard), if it reaches
       DESCRIPTION_MATCH_THRESHOLD; earlier items win ties
    """
    wanted = _normalize(description)
    if not wanted:
        return None

    for item in items:
        if _normalize(item.get("description")) == wanted:
            return item

    wanted_tokens = _tokens(description)
    best, best_score = None, Decimal("0")
    for item in items:
        have = _tokens(item.get("description"))
        if not have:
            continue
        score = Decimal(len(wanted_tokens & have)) / Decimal(len(wanted_tokens | have))
        if score > best_score:
            best, best_score = item, score

    if best is not None and best_score >= DESCRIPTION_MATCH_THRESHOLD:
        return best
    return None


class PricingResolver:
    """
    Per line, first rule that yields a price wins:
      1. explicit unit price, only when the caller may override prices
      2. item code within the active rate card (miss -> description match)
      3. service category (no item in category -> description match)
      4. description match
    Lines that resolve nowhere become per-line errors; the batch carries on.
    Without an active rate card nothing resolves, every line is an error.
    """

    def __init__(
        self,
        rate_cards: RateCardService,
        *,
        default_tax_rate: Decimal = Decimal("0.15"),
        default_unit: str = "hour",
        tax_class_rates: Optional[Dict[str, Decimal]] = None,
    ):
        self.rate_cards = rate_cards
        self.default_tax_rate = Decimal(str(default_tax_rate))
        self.default_unit = default_unit
        self.tax_class_rates = {k: Decimal(str(v)) for k, v in (tax_class_rates or {}).items()}

    def tax_rate_for_class(self, tax_class: Optional[str]) -> Decimal:
        return self.tax_class_rates.get(tax_class or "", self.default_tax_rate)

    def resolve_pricing(
        self,
        db: Session,
        *,
        organization_id: str,
        line_items: Sequence[PricingLineInput],
        has_override_permission: bool,
        effective_date: date,
        currency: Optional[str] = None,
    ) -> PricingResult:
        result = PricingResult()
        pending: List[PricingLineInput] = []

        # no card in effect fails every line, explicit prices included
        card = self.rate_cards.get_active_rate_card(db, organization_id, effective_date)
        if card is None:
            logger.info("[pricing] no active rate card org=%s date=%s", organization_id, effective_date)
            for line in line_items:
                result.errors.append(PricingError(line.line_number, line.description, NO_ACTIVE_RATE_CARD))
            return result

        for line in line_items:
            if line.unit_price is not None and has_override_permission:
                result.results.append(
                    ResolvedPrice(
                        line_number=line.line_number,
                        unit_price=Decimal(str(line.unit_price)),
                        tax_rate=Decimal(str(line.tax_rate)) if line.tax_rate is not None else self.default_tax_rate,
                        unit=line.unit or self.default_unit,
                        source="explicit",
                        matched_by="explicit",
                        service_category_id=line.service_category_id,
                        currency=currency,
                    )
                )
            else:
                pending.append(line)

        if not pending:
            return result

        items = [
            i for i in self.rate_cards.get_items(db, organization_id, card["id"])
            if item_in_effect(i, effective_date)
        ]

        for line in pending:
            item, matched_by = self._match(db, organization_id, card["id"], line, items, effective_date)
            if item is None:
                result.errors.append(PricingError(line.line_number, line.description, self._miss_reason(line)))
                continue

            if currency and item.get("currency") and item["currency"] != currency:
                result.errors.append(
                    PricingError(
                        line.line_number,
                        line.description,
                        f"Rate card item currency {item['currency']} does not match quote currency {currency}",
                    )
                )
                continue

            result.results.append(
                ResolvedPrice(
                    line_number=line.line_number,
                    unit_price=Decimal(item["baseRate"]),
                    tax_rate=self.tax_rate_for_class(item.get("taxClass")),
                    unit=line.unit or item.get("unit") or self.default_unit,
                    source="rate_card",
                    matched_by=matched_by,
                    rate_card_id=card["id"],
                    rate_card_item_id=item["id"],
                    service_category_id=item.get("serviceCategoryId"),
                    currency=item.get("currency"),
                )
            )

        if result.errors:
            logger.info(
                "[pricing] org=%s resolved=%s failed=%s",
                organization_id,
                len(result.results),
                len(result.errors),
            )
        return result

    def _match(self, db, organization_id, rate_card_id, line, items, effective_date):
        if line.sku:
            item = self.rate_cards.find_item_by_code(db, organization_id, rate_card_id, line.sku, effective_date)
            if item is not None:
                return item, "item_code"
            item = match_by_description(line.description, items)
            return item, "description"

        if line.service_category_id:
            in_category = [i for i in items if i.get("serviceCategoryId") == line.service_category_id]
            if in_category:
                return match_by_description(line.description, in_category) or in_category[0], "service_category"
            return match_by_description(line.description, items), "description"

        return match_by_description(line.description, items), "description"

    @staticmethod
    def _miss_reason(line: PricingLineInput) -> str:
        if line.sku:
            return f"No active rate card item for code {line.sku} or description"
        if line.service_category_id:
            return f"No active rate card item for service category {line.service_category_id} or description"
        return "No active rate card item matches description"
