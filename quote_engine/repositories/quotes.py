#quote_engine/repositories/quotes.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from quote_engine.models.quote import Quote, QuoteLineItem

SORT_COLUMNS = {
    "createdAt": Quote.created_at,
    "updatedAt": Quote.updated_at,
    "title": Quote.title,
    "status": Quote.status,
    "totalAmount": Quote.total_amount,
    "validUntil": Quote.valid_until,
}


@dataclass
class QuoteFilters:
    status: Optional[Sequence[str]] = None
    customer_id: Optional[str] = None
    project_id: Optional[str] = None
    type: Optional[str] = None
    q: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    created_by: Optional[str] = None


class QuoteRepository:
    """
    Quotes of one organization, always excluding soft-deleted rows unless asked.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(
        self,
        organization_id: str,
        quote_id: uuid.UUID,
        *,
        include_deleted: bool = False,
    ) -> Optional[Quote]:
        stmt = (
            select(Quote)
            .options(selectinload(Quote.line_items))
            .where(Quote.id == quote_id, Quote.organization_id == organization_id)
        )
        if not include_deleted:
            stmt = stmt.where(Quote.deleted_at.is_(None))
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, quote: Quote) -> Quote:
        self.db.add(quote)
        self.db.flush()
        return quote

    def quote_numbers(self, organization_id: str, *, like: Optional[str] = None) -> List[str]:
        stmt = select(Quote.quote_number).where(
            Quote.organization_id == organization_id,
            Quote.deleted_at.is_(None),
        )
        if like:
            stmt = stmt.where(Quote.quote_number.like(like))
        return list(self.db.execute(stmt).scalars().all())

    def number_exists(self, organization_id: str, quote_number: str) -> bool:
        found = self.db.execute(
            select(Quote.id)
            .where(
                Quote.organization_id == organization_id,
                Quote.quote_number == quote_number,
                Quote.deleted_at.is_(None),
            )
            .limit(1)
        ).first()
        return found is not None

    def list(
        self,
        organization_id: str,
        filters: QuoteFilters,
        *,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Quote], int]:
        conditions = [Quote.organization_id == organization_id, Quote.deleted_at.is_(None)]

        if filters.status:
            conditions.append(Quote.status.in_(list(filters.status)))
        if filters.customer_id:
            conditions.append(Quote.customer_id == filters.customer_id)
        if filters.project_id:
            conditions.append(Quote.project_id == filters.project_id)
        if filters.type:
            conditions.append(Quote.type == filters.type)
        if filters.created_by:
            conditions.append(Quote.created_by == filters.created_by)
        if filters.valid_from:
            conditions.append(Quote.valid_from >= filters.valid_from)
        if filters.valid_until:
            conditions.append(Quote.valid_until <= filters.valid_until)
        if filters.q:
            needle = f"%{filters.q.lower()}%"
            conditions.append(
                or_(
                    func.lower(Quote.title).like(needle),
                    func.lower(Quote.description).like(needle),
                    func.lower(Quote.quote_number).like(needle),
                )
            )

        total = self.db.execute(
            select(func.count()).select_from(Quote).where(*conditions)
        ).scalar_one()

        column = SORT_COLUMNS.get(sort_by, Quote.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()

        rows = (
            self.db.execute(
                select(Quote)
                .options(selectinload(Quote.line_items))
                .where(*conditions)
                .order_by(ordering, Quote.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            .scalars()
            .all()
        )
        return list(rows), int(total)


class QuoteLineItemRepository:
    def __init__(self, db: Session):
        self.db = db

    def replace_all(self, quote: Quote, items: Sequence[QuoteLineItem]) -> List[QuoteLineItem]:
        """
        Old rows are deleted and flushed before the new ones go in, otherwise
        the (quote_id, line_number) constraint trips on the insert.
        """
        quote.line_items.clear()
        self.db.flush()
        quote.line_items.extend(items)
        self.db.flush()
        return list(quote.line_items)
