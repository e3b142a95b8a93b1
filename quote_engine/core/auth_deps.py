#quote_engine/core/auth_deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from quote_engine.core.security import decode_token
from quote_engine.policies.rbac import Principal, Role, build_principal

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    """
    Canonical caller-context dependency.

    Guarantees:
    - JWT is valid
    - user id, organization id and role are present
    - role is a valid Role
    - the permission set is the role's defaults plus any explicit
      `permissions` claim
    """

    try:
        payload = decode_token(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    user_id = payload.get("user_id") or payload.get("sub")
    organization_id = payload.get("organization_id")
    role = payload.get("role")

    if not user_id or not organization_id or not role:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        role_enum = Role(role)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    extra = payload.get("permissions") or []
    if not isinstance(extra, list):
        raise HTTPException(status_code=401, detail="Invalid permissions claim.")

    principal = build_principal(
        user_id=str(user_id),
        organization_id=str(organization_id),
        role=role_enum,
        extra_permissions=[str(p) for p in extra],
    )

    # Make principal available to downstream middleware / handlers
    request.state.principal = principal

    return principal
