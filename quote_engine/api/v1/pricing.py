from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from quote_engine.api.v1.errors import to_http
from quote_engine.core.auth_deps import get_current_principal
from quote_engine.core.clock import utcnow
from quote_engine.core.deps import get_pricing_resolver
from quote_engine.db.session import get_db
from quote_engine.policies.rbac import PERM_OVERRIDE_PRICE, PERM_QUOTES_VIEW, Principal, require_permission
from quote_engine.schemas.pricing import PricingResolveRequest, serialize_pricing_result
from quote_engine.services.pricing_resolver import PricingLineInput, PricingResolver

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post("/resolve")
def resolve_pricing(
    payload: PricingResolveRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    resolver: PricingResolver = Depends(get_pricing_resolver),
):
    """
    Per-line results and errors; a partially resolved batch is still a 200.
    """
    try:
        require_permission(principal, PERM_QUOTES_VIEW)
    except PermissionError as e:
        raise to_http(e)

    result = resolver.resolve_pricing(
        db,
        organization_id=principal.organization_id,
        line_items=[
            PricingLineInput(
                line_number=li.line_number,
                description=li.description,
                unit_price=li.unit_price,
                sku=li.sku,
                service_category_id=li.service_category_id,
                unit=li.unit,
                tax_rate=li.tax_rate,
            )
            for li in payload.line_items
        ],
        has_override_permission=principal.can(PERM_OVERRIDE_PRICE),
        effective_date=payload.effective_date or utcnow().date(),
        currency=payload.currency,
    )
    return serialize_pricing_result(result)
