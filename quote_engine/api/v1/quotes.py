# quote_engine/api/v1/quotes.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from quote_engine.api.v1.errors import to_http
from quote_engine.core.auth_deps import get_current_principal
from quote_engine.core.clock import as_utc
from quote_engine.core.deps import get_quote_service
from quote_engine.core.deps_idempotency import idempotency_context
from quote_engine.core.errors import QuoteEngineError
from quote_engine.db.session import get_db
from quote_engine.models.enums import QuoteStatus, QuoteType
from quote_engine.policies.rbac import Principal
from quote_engine.repositories.quotes import QuoteFilters
from quote_engine.schemas.quotes import (
    CalculateRequest,
    QuoteCreate,
    QuoteUpdate,
    StatusTransitionRequest,
    serialize_quote,
    serialize_version,
    serialize_version_summary,
)
from quote_engine.services.idempotency_service import IdempotencyContext
from quote_engine.services.quote_service import MutationResult, QuoteService

router = APIRouter(prefix="/quotes", tags=["quotes"])

SortField = Literal["createdAt", "updatedAt", "title", "status", "totalAmount", "validUntil"]


def _respond(result: MutationResult) -> JSONResponse:
    # first response and replays go out the same way: the stored body verbatim
    return JSONResponse(status_code=result.status_code, content=result.body)


# ---------------------------------------------------------------------
# POST /quotes
# ---------------------------------------------------------------------


@router.post("", status_code=201)
def create_quote(
    request: Request,
    payload: QuoteCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    idem: Optional[IdempotencyContext] = Depends(idempotency_context),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        result = svc.create_quote(
            db,
            principal=principal,
            payload=payload,
            idempotency=idem,
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return _respond(result)


# ---------------------------------------------------------------------
# GET /quotes
# ---------------------------------------------------------------------


@router.get("")
def list_quotes(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: QuoteService = Depends(get_quote_service),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    sort_by: SortField = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    status: Optional[List[QuoteStatus]] = Query(None),
    customer_id: Optional[str] = Query(None, alias="customerId"),
    project_id: Optional[str] = Query(None, alias="projectId"),
    type: Optional[QuoteType] = Query(None),
    q: Optional[str] = Query(None, max_length=200),
    valid_from: Optional[datetime] = Query(None, alias="validFrom"),
    valid_until: Optional[datetime] = Query(None, alias="validUntil"),
    created_by: Optional[str] = Query(None, alias="createdBy"),
):
    filters = QuoteFilters(
        status=[s.value for s in status] if status else None,
        customer_id=customer_id,
        project_id=project_id,
        type=type.value if type else None,
        q=q,
        valid_from=as_utc(valid_from),
        valid_until=as_utc(valid_until),
        created_by=created_by,
    )
    try:
        items, page_info = svc.list_quotes(
            db,
            principal=principal,
            filters=filters,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=page_size,
        )
    except PermissionError as e:
        raise to_http(e)

    return {"items": [serialize_quote(q) for q in items], "pagination": page_info}


# ---------------------------------------------------------------------
# POST /quotes/calculate  (dry run)
# ---------------------------------------------------------------------


@router.post("/calculate")
def calculate_quote(
    payload: CalculateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        return svc.calculate_preview(db, principal=principal, payload=payload)
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)


@router.get("/number-exists")
def quote_number_exists(
    number: str = Query(..., min_length=1, max_length=32),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        exists = svc.quote_number_exists(db, principal=principal, quote_number=number)
    except PermissionError as e:
        raise to_http(e)
    return {"quoteNumber": number, "exists": exists}


# ---------------------------------------------------------------------
# /quotes/{id}
# ---------------------------------------------------------------------


@router.get("/{quote_id}")
def get_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        quote = svc.get_quote_by_id(db, principal=principal, quote_id=quote_id)
    except PermissionError as e:
        raise to_http(e)
    if quote is None:
        raise HTTPException(status_code=404, detail={"code": "QUOTE_NOT_FOUND", "message": "Quote not found."})
    return serialize_quote(quote)


@router.patch("/{quote_id}")
def update_quote(
    request: Request,
    quote_id: uuid.UUID,
    payload: QuoteUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    idem: Optional[IdempotencyContext] = Depends(idempotency_context),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        result = svc.update_quote(
            db,
            principal=principal,
            quote_id=quote_id,
            payload=payload,
            idempotency=idem,
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return _respond(result)


@router.post("/{quote_id}/status")
def transition_status(
    request: Request,
    quote_id: uuid.UUID,
    payload: StatusTransitionRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    idem: Optional[IdempotencyContext] = Depends(idempotency_context),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        result = svc.transition_status(
            db,
            principal=principal,
            quote_id=quote_id,
            status=payload.status.value,
            notes=payload.notes,
            idempotency=idem,
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return _respond(result)


@router.delete("/{quote_id}", status_code=204)
def delete_quote(
    request: Request,
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        svc.delete_quote(
            db,
            principal=principal,
            quote_id=quote_id,
            request_id=getattr(request.state, "request_id", None),
        )
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return Response(status_code=204)


# ---------------------------------------------------------------------
# versions
# ---------------------------------------------------------------------


@router.get("/{quote_id}/versions")
def list_versions(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        versions = svc.get_quote_versions(db, principal=principal, quote_id=quote_id)
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return {"quoteId": str(quote_id), "versions": [serialize_version_summary(v) for v in versions]}


@router.get("/{quote_id}/versions/{version_id}")
def get_version(
    quote_id: uuid.UUID,
    version_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: QuoteService = Depends(get_quote_service),
):
    try:
        version = svc.get_quote_version(db, principal=principal, quote_id=quote_id, version_id=version_id)
    except (QuoteEngineError, PermissionError) as e:
        raise to_http(e)
    return serialize_version(version)
