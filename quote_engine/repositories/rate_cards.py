#quote_engine/repositories/rate_cards.py
from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from quote_engine.core.clock import start_of_day
from quote_engine.models.rate_card import RateCard, RateCardItem


class RateCardRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, organization_id: str, rate_card_id: uuid.UUID) -> Optional[RateCard]:
        return self.db.execute(
            select(RateCard).where(
                RateCard.id == rate_card_id,
                RateCard.organization_id == organization_id,
            )
        ).scalar_one_or_none()

    def add(self, card: RateCard) -> RateCard:
        self.db.add(card)
        self.db.flush()
        return card

    def list(self, organization_id: str, *, active_only: bool = False) -> List[RateCard]:
        stmt = select(RateCard).where(RateCard.organization_id == organization_id)
        if active_only:
            stmt = stmt.where(RateCard.is_active.is_(True))
        stmt = stmt.order_by(RateCard.effective_from.desc(), RateCard.name)
        return list(self.db.execute(stmt).scalars().all())

    def find_active(self, organization_id: str, on: date) -> Optional[RateCard]:
        """
        A card is in effect on `on` when it starts on or before that day and
        has no end, or ends on or after that day.
        Default cards win; ties go to the most recent effective_from.
        """
        day_start = start_of_day(on)
        next_day = start_of_day(on + timedelta(days=1))
        return (
            self.db.execute(
                select(RateCard)
                .where(
                    RateCard.organization_id == organization_id,
                    RateCard.is_active.is_(True),
                    RateCard.effective_from < next_day,
                    or_(RateCard.effective_until.is_(None), RateCard.effective_until >= day_start),
                )
                .order_by(RateCard.is_default.desc(), RateCard.effective_from.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )


class RateCardItemRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, organization_id: str, item_id: uuid.UUID) -> Optional[RateCardItem]:
        return self.db.execute(
            select(RateCardItem)
            .join(RateCard, RateCard.id == RateCardItem.rate_card_id)
            .where(
                RateCardItem.id == item_id,
                RateCard.organization_id == organization_id,
            )
        ).scalar_one_or_none()

    def add(self, item: RateCardItem) -> RateCardItem:
        self.db.add(item)
        self.db.flush()
        return item

    def list_for_card(self, rate_card_id: uuid.UUID) -> List[RateCardItem]:
        return list(
            self.db.execute(
                select(RateCardItem)
                .where(RateCardItem.rate_card_id == rate_card_id)
                .order_by(RateCardItem.created_at, RateCardItem.id)
            )
            .scalars()
            .all()
        )

    def find_by_code(self, rate_card_id: uuid.UUID, item_code: str) -> List[RateCardItem]:
        return list(
            self.db.execute(
                select(RateCardItem)
                .where(
                    RateCardItem.rate_card_id == rate_card_id,
                    RateCardItem.item_code == item_code,
                )
                .order_by(RateCardItem.created_at, RateCardItem.id)
            )
            .scalars()
            .all()
        )
