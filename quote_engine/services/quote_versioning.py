#quote_engine/services/quote_versioning.py
from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from quote_engine.core.errors import QuoteNotFound, QuoteVersionNotFound
from quote_engine.models.quote import Quote
from quote_engine.models.quote_version import QuoteLineItemVersion, QuoteVersion
from quote_engine.repositories.quotes import QuoteRepository
from quote_engine.repositories.versions import QuoteVersionRepository

_QUOTE_FIELDS = (
    "quote_number",
    "customer_id",
    "project_id",
    "title",
    "description",
    "status",
    "type",
    "valid_from",
    "valid_until",
    "currency",
    "exchange_rate",
    "subtotal",
    "tax_amount",
    "discount_amount",
    "total_amount",
    "discount_type",
    "discount_value",
    "terms_conditions",
    "notes",
    "internal_notes",
)

_LINE_FIELDS = (
    "line_number",
    "type",
    "sku",
    "description",
    "quantity",
    "unit_price",
    "unit_cost",
    "unit",
    "tax_inclusive",
    "tax_rate",
    "discount_type",
    "discount_value",
    "percentage_discount",
    "fixed_discount",
    "service_category_id",
    "rate_card_id",
    "pricing_source",
    "tax_amount",
    "discount_amount",
    "subtotal",
    "total_amount",
)


class QuoteVersioningService:
    def create_version(
        self,
        db: Session,
        *,
        quote: Quote,
        created_by: str,
        change_reason: Optional[str] = None,
    ) -> QuoteVersion:
        """
        Snapshot of `quote` and its current line items as they are now.
        version_number = previous max + 1 (1 for the first one).
        """
        repo = QuoteVersionRepository(db)
        version = QuoteVersion(
            quote_id=quote.id,
            organization_id=quote.organization_id,
            version_number=repo.max_version_number(quote.id) + 1,
            metadata_json=dict(quote.metadata_json or {}),
            change_reason=change_reason,
            created_by=created_by,
        )
        for name in _QUOTE_FIELDS:
            setattr(version, name, getattr(quote, name))

        for li in quote.line_items:
            snap = QuoteLineItemVersion(
                original_line_item_id=li.id,
                metadata_json=dict(li.metadata_json or {}),
            )
            for name in _LINE_FIELDS:
                setattr(snap, name, getattr(li, name))
            version.line_items.append(snap)

        return repo.add(version)

    def get_quote_versions(
        self,
        db: Session,
        *,
        organization_id: str,
        quote_id: uuid.UUID,
    ) -> List[QuoteVersion]:
        if QuoteRepository(db).get(organization_id, quote_id) is None:
            raise QuoteNotFound()
        return QuoteVersionRepository(db).list_for_quote(quote_id)

    def get_quote_version(
        self,
        db: Session,
        *,
        organization_id: str,
        quote_id: uuid.UUID,
        version_id: uuid.UUID,
    ) -> QuoteVersion:
        if QuoteRepository(db).get(organization_id, quote_id) is None:
            raise QuoteNotFound()
        version = QuoteVersionRepository(db).get(quote_id, version_id)
        if version is None:
            raise QuoteVersionNotFound()
        return version
