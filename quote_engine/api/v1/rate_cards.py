# quote_engine/api/v1/rate_cards.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from quote_engine.api.v1.errors import to_http
from quote_engine.core.auth_deps import get_current_principal
from quote_engine.core.deps import get_rate_card_service
from quote_engine.core.errors import QuoteEngineError
from quote_engine.db.session import get_db
from quote_engine.policies.rbac import Principal
from quote_engine.repositories.rate_cards import RateCardItemRepository
from quote_engine.schemas.rate_cards import (
    RateCardCreate,
    RateCardItemCreate,
    RateCardItemUpdate,
    RateCardUpdate,
    serialize_rate_card,
    serialize_rate_card_item,
    to_columns,
)
from quote_engine.services.rate_card_service import RateCardService

router = APIRouter(prefix="/rate-cards", tags=["rate-cards"])


@router.get("")
def list_rate_cards(
    active_only: bool = Query(False, alias="activeOnly"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: RateCardService = Depends(get_rate_card_service),
):
    try:
        cards = svc.list_rate_cards(db, principal=principal, active_only=active_only)
    except PermissionError as e:
        raise to_http(e)
    return {"items": [serialize_rate_card(c) for c in cards]}


@router.post("", status_code=201)
def create_rate_card(
    request: Request,
    payload: RateCardCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: RateCardService = Depends(get_rate_card_service),
):
    try:
        card = svc.create_rate_card(
            db,
            principal=principal,
            data=to_columns(payload, partial=False),
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return serialize_rate_card(card)


@router.get("/{rate_card_id}")
def get_rate_card(
    rate_card_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: RateCardService = Depends(get_rate_card_service),
):
    try:
        card = svc.get_rate_card(db, principal=principal, rate_card_id=rate_card_id)
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    items = RateCardItemRepository(db).list_for_card(card.id)
    return {**serialize_rate_card(card), "items": [serialize_rate_card_item(i) for i in items]}


@router.patch("/{rate_card_id}")
def update_rate_card(
    request: Request,
    rate_card_id: uuid.UUID,
    payload: RateCardUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: RateCardService = Depends(get_rate_card_service),
):
    try:
        card = svc.update_rate_card(
            db,
            principal=principal,
            rate_card_id=rate_card_id,
            data=to_columns(payload, partial=True),
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return serialize_rate_card(card)


@router.post("/{rate_card_id}/items", status_code=201)
def create_rate_card_item(
    request: Request,
    rate_card_id: uuid.UUID,
    payload: RateCardItemCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: RateCardService = Depends(get_rate_card_service),
):
    try:
        item = svc.create_item(
            db,
            principal=principal,
            rate_card_id=rate_card_id,
            data=to_columns(payload, partial=False),
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return serialize_rate_card_item(item)


@router.patch("/items/{item_id}")
def update_rate_card_item(
    request: Request,
    item_id: uuid.UUID,
    payload: RateCardItemUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: RateCardService = Depends(get_rate_card_service),
):
    try:
        item = svc.update_item(
            db,
            principal=principal,
            item_id=item_id,
            data=to_columns(payload, partial=True),
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return serialize_rate_card_item(item)
