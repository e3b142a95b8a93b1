from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request

from quote_engine.core.auth_deps import get_current_principal
from quote_engine.policies.rbac import Principal
from quote_engine.services.idempotency_service import IdempotencyContext, build_context


async def optional_idempotency_key(request: Request) -> Optional[str]:
    key = request.headers.get("Idempotency-Key")
    if key is None:
        return None
    key = key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="Empty Idempotency-Key header.")
    if len(key) > 128:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long.")
    return key


async def idempotency_context(
    request: Request,
    idem_key: Optional[str] = Depends(optional_idempotency_key),
    principal: Principal = Depends(get_current_principal),
) -> Optional[IdempotencyContext]:
    """
    Use on mutating quote endpoints.

    No header -> None (request is processed normally).
    Otherwise the context scopes the key to (org, user, METHOD:path) and
    carries the request body hash.
    """
    if idem_key is None:
        return None

    # Read JSON body once (Starlette caches it for the body parser)
    try:
        payload = await request.json()
    except Exception:
        payload = {}

    return build_context(
        key=idem_key,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        method=request.method,
        route=request.url.path,
        body=payload,
    )
