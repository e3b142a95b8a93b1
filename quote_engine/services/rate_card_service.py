#quote_engine/services/rate_card_service.py
from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from quote_engine.core.cache import CacheBackend
from quote_engine.core.clock import as_utc, iso, utcnow
from quote_engine.core.errors import RateCardItemNotFound, RateCardNotFound, ValidationFailed
from quote_engine.db.session import transaction
from quote_engine.models.rate_card import RateCard, RateCardItem
from quote_engine.policies.rbac import PERM_QUOTES_VIEW, PERM_RATE_CARDS_MANAGE, Principal, require_permission
from quote_engine.repositories.rate_cards import RateCardItemRepository, RateCardRepository
from quote_engine.services.audit_service import AuditAction, AuditEvent, AuditSink

logger = logging.getLogger(__name__)

CARD_FIELDS = ("name", "version", "description", "currency", "effective_from", "effective_until", "is_default", "is_active")
ITEM_FIELDS = (
    "service_category_id",
    "role_id",
    "item_code",
    "description",
    "unit",
    "base_rate",
    "currency",
    "tax_class",
    "effective_from",
    "effective_until",
    "is_active",
    "metadata_json",
)
# columns a PATCH may clear with an explicit null
NULLABLE_FIELDS = frozenset({"description", "effective_until", "role_id", "item_code"})


def _day(dt) -> Optional[str]:
    dt = as_utc(dt)
    return dt.date().isoformat() if dt is not None else None


def card_snapshot(card: RateCard) -> Dict[str, Any]:
    return {
        "id": str(card.id),
        "name": card.name,
        "version": card.version,
        "currency": card.currency,
        "isDefault": bool(card.is_default),
        "effectiveFrom": iso(card.effective_from),
        "effectiveUntil": iso(card.effective_until),
    }


def item_snapshot(item: RateCardItem) -> Dict[str, Any]:
    # Cached form: plain JSON, Decimal as string, window as ISO days
    return {
        "id": str(item.id),
        "rateCardId": str(item.rate_card_id),
        "serviceCategoryId": item.service_category_id,
        "roleId": item.role_id,
        "itemCode": item.item_code,
        "description": item.description,
        "unit": item.unit,
        "baseRate": str(item.base_rate),
        "currency": item.currency,
        "taxClass": item.tax_class,
        "effectiveFrom": _day(item.effective_from),
        "effectiveUntil": _day(item.effective_until),
        "isActive": bool(item.is_active),
    }


def item_in_effect(snapshot: Dict[str, Any], on: date) -> bool:
    if not snapshot.get("isActive"):
        return False
    day = on.isoformat()
    start = snapshot.get("effectiveFrom")
    end = snapshot.get("effectiveUntil")
    if start and start > day:
        return False
    if end and end < day:
        return False
    return True


class RateCardService:
    """
    Rate cards and their items, fronted by a TTL cache.

    Cache keys (all scoped under the organization):
      {prefix}:{org}:ratecard:active:{date}           (rate_card_cache_ttl)
      {prefix}:{org}:rateitems:{card}                 (rate_item_cache_ttl)
      {prefix}:{org}:rateitem:{card}:code:{code}      (rate_item_cache_ttl)

    Any write to a card or item drops every key of the organization.
    Misses are not cached.
    """

    def __init__(
        self,
        cache: CacheBackend,
        *,
        key_prefix: str = "quote-engine",
        card_ttl: int = 60,
        item_ttl: int = 300,
        audit: Optional[AuditSink] = None,
    ):
        self.cache = cache
        self.key_prefix = key_prefix
        self.card_ttl = card_ttl
        self.item_ttl = item_ttl
        self.audit = audit

    # ---------------------------
    # CACHE KEYS
    # ---------------------------

    def _org_prefix(self, organization_id: str) -> str:
        return f"{self.key_prefix}:{organization_id}:"

    def _active_key(self, organization_id: str, on: date) -> str:
        return f"{self._org_prefix(organization_id)}ratecard:active:{on.isoformat()}"

    def _items_key(self, organization_id: str, rate_card_id: str) -> str:
        return f"{self._org_prefix(organization_id)}rateitems:{rate_card_id}"

    def _code_key(self, organization_id: str, rate_card_id: str, code: str) -> str:
        return f"{self._org_prefix(organization_id)}rateitem:{rate_card_id}:code:{code}"

    def invalidate_organization(self, organization_id: str) -> int:
        removed = self.cache.delete_prefix(self._org_prefix(organization_id))
        logger.info("[rate_cards] cache bust org=%s keys=%s", organization_id, removed)
        return removed

    # ---------------------------
    # READS (pricing path)
    # ---------------------------

    def get_active_rate_card(self, db: Session, organization_id: str, on: date) -> Optional[Dict[str, Any]]:
        key = self._active_key(organization_id, on)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        card = RateCardRepository(db).find_active(organization_id, on)
        if card is None:
            return None

        snap = card_snapshot(card)
        self.cache.set(key, snap, self.card_ttl)
        return snap

    def get_items(self, db: Session, organization_id: str, rate_card_id: str) -> List[Dict[str, Any]]:
        """
        Every item of the card, active or not; callers filter with item_in_effect.
        """
        key = self._items_key(organization_id, rate_card_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        rows = RateCardItemRepository(db).list_for_card(uuid.UUID(str(rate_card_id)))
        snaps = [item_snapshot(r) for r in rows]
        if snaps:
            self.cache.set(key, snaps, self.item_ttl)
        return snaps

    def find_item_by_code(
        self,
        db: Session,
        organization_id: str,
        rate_card_id: str,
        code: str,
        on: date,
    ) -> Optional[Dict[str, Any]]:
        key = self._code_key(organization_id, rate_card_id, code)
        cached = self.cache.get(key)
        if cached is None:
            rows = RateCardItemRepository(db).find_by_code(uuid.UUID(str(rate_card_id)), code)
            if not rows:
                return None
            cached = [item_snapshot(r) for r in rows]
            self.cache.set(key, cached, self.item_ttl)

        for snap in cached:
            if item_in_effect(snap, on):
                return snap
        return None

    # ---------------------------
    # MANAGEMENT
    # ---------------------------

    def list_rate_cards(self, db: Session, *, principal: Principal, active_only: bool = False) -> List[RateCard]:
        require_permission(principal, PERM_QUOTES_VIEW)
        return RateCardRepository(db).list(principal.organization_id, active_only=active_only)

    def get_rate_card(self, db: Session, *, principal: Principal, rate_card_id: uuid.UUID) -> RateCard:
        require_permission(principal, PERM_QUOTES_VIEW)
        return self._card_or_404(db, principal.organization_id, rate_card_id)

    @staticmethod
    def _card_or_404(db: Session, organization_id: str, rate_card_id: uuid.UUID) -> RateCard:
        card = RateCardRepository(db).get(organization_id, rate_card_id)
        if card is None:
            raise RateCardNotFound()
        return card

    def create_rate_card(
        self,
        db: Session,
        *,
        principal: Principal,
        data: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> RateCard:
        require_permission(principal, PERM_RATE_CARDS_MANAGE)
        _check_window(data.get("effective_from"), data.get("effective_until"))

        with transaction(db):
            card = RateCard(
                organization_id=principal.organization_id,
                created_by=principal.user_id,
                **{k: v for k, v in data.items() if k in CARD_FIELDS and v is not None},
            )
            RateCardRepository(db).add(card)
            self._emit(db, principal, AuditAction.RATE_CARD_CREATED, "rate_card", card.id, None, _card_values(card), request_id)

        self.invalidate_organization(principal.organization_id)
        return card

    def update_rate_card(
        self,
        db: Session,
        *,
        principal: Principal,
        rate_card_id: uuid.UUID,
        data: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> RateCard:
        require_permission(principal, PERM_RATE_CARDS_MANAGE)

        with transaction(db):
            card = self._card_or_404(db, principal.organization_id, rate_card_id)
            old = _card_values(card)
            for k, v in data.items():
                if k in CARD_FIELDS and (v is not None or k in NULLABLE_FIELDS):
                    setattr(card, k, v)
            _check_window(card.effective_from, card.effective_until)
            card.updated_at = utcnow()
            db.flush()
            self._emit(db, principal, AuditAction.RATE_CARD_UPDATED, "rate_card", card.id, old, _card_values(card), request_id)

        self.invalidate_organization(principal.organization_id)
        return card

    def create_item(
        self,
        db: Session,
        *,
        principal: Principal,
        rate_card_id: uuid.UUID,
        data: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> RateCardItem:
        require_permission(principal, PERM_RATE_CARDS_MANAGE)
        _check_window(data.get("effective_from"), data.get("effective_until"))

        with transaction(db):
            card = self._card_or_404(db, principal.organization_id, rate_card_id)
            fields = {k: v for k, v in data.items() if k in ITEM_FIELDS and v is not None}
            fields.setdefault("currency", card.currency)
            item = RateCardItem(rate_card_id=card.id, **fields)
            RateCardItemRepository(db).add(item)
            self._emit(db, principal, AuditAction.RATE_CARD_ITEM_CREATED, "rate_card_item", item.id, None, _item_values(item), request_id)

        self.invalidate_organization(principal.organization_id)
        return item

    def update_item(
        self,
        db: Session,
        *,
        principal: Principal,
        item_id: uuid.UUID,
        data: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> RateCardItem:
        require_permission(principal, PERM_RATE_CARDS_MANAGE)

        with transaction(db):
            item = RateCardItemRepository(db).get(principal.organization_id, item_id)
            if item is None:
                raise RateCardItemNotFound()
            old = _item_values(item)
            for k, v in data.items():
                if k in ITEM_FIELDS and (v is not None or k in NULLABLE_FIELDS):
                    setattr(item, k, v)
            _check_window(item.effective_from, item.effective_until)
            item.updated_at = utcnow()
            db.flush()
            self._emit(db, principal, AuditAction.RATE_CARD_ITEM_UPDATED, "rate_card_item", item.id, old, _item_values(item), request_id)

        self.invalidate_organization(principal.organization_id)
        return item

    def _emit(self, db, principal, action, entity_type, entity_id, old, new, request_id) -> None:
        if self.audit is None:
            return
        self.audit.append(
            db,
            AuditEvent(
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                organization_id=principal.organization_id,
                user_id=principal.user_id,
                old_values=old,
                new_values=new,
                request_id=request_id,
            ),
        )


def _check_window(start, end) -> None:
    if start is not None and end is not None and as_utc(end) < as_utc(start):
        raise ValidationFailed(
            "Invalid effective window.",
            errors=[{"field": "effectiveUntil", "reason": "must not be before effectiveFrom"}],
        )


def _card_values(card: RateCard) -> Dict[str, Any]:
    return {name: getattr(card, name) for name in CARD_FIELDS}


def _item_values(item: RateCardItem) -> Dict[str, Any]:
    values = {name: getattr(item, name) for name in ITEM_FIELDS if name != "metadata_json"}
    values["base_rate"] = str(Decimal(str(item.base_rate)))
    return values
