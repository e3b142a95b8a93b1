#quote_engine/repositories/versions.py
from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from quote_engine.models.quote_version import QuoteVersion


class QuoteVersionRepository:
    def __init__(self, db: Session):
        self.db = db

    def max_version_number(self, quote_id: uuid.UUID) -> int:
        current = self.db.execute(
            select(func.max(QuoteVersion.version_number)).where(QuoteVersion.quote_id == quote_id)
        ).scalar_one_or_none()
        return int(current or 0)

    def add(self, version: QuoteVersion) -> QuoteVersion:
        self.db.add(version)
        self.db.flush()
        return version

    def list_for_quote(self, quote_id: uuid.UUID) -> List[QuoteVersion]:
        return list(
            self.db.execute(
                select(QuoteVersion)
                .where(QuoteVersion.quote_id == quote_id)
                .order_by(QuoteVersion.version_number.desc())
            )
            .scalars()
            .all()
        )

    def get(self, quote_id: uuid.UUID, version_id: uuid.UUID) -> Optional[QuoteVersion]:
        return self.db.execute(
            select(QuoteVersion)
            .options(selectinload(QuoteVersion.line_items))
            .where(QuoteVersion.id == version_id, QuoteVersion.quote_id == quote_id)
        ).scalar_one_or_none()
