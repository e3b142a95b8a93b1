#quote_engine/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Set


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SALES = "SALES"
    VIEWER = "VIEWER"


# --- Permission constants ---
PERM_QUOTES_VIEW = "quotes.view"
PERM_QUOTES_CREATE = "quotes.create"
PERM_QUOTES_UPDATE = "quotes.update"
PERM_QUOTES_DELETE = "quotes.delete"
PERM_QUOTES_TRANSITION = "quotes.transition"
PERM_OVERRIDE_PRICE = "quotes.override_price"
PERM_FORCE_EDIT = "quotes.force_edit"
PERM_RATE_CARDS_MANAGE = "rate_cards.manage"


@dataclass(frozen=True)
class Principal:
    user_id: str
    organization_id: str
    role: Role
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    def can(self, permission: str) -> bool:
        return permission in self.permissions


def role_permissions(role: Role) -> Set[str]:
    """
    Pure RBAC: which permissions a role carries by default.
    """

    base = {PERM_QUOTES_VIEW}

    if role == Role.VIEWER:
        return base

    sales = base | {PERM_QUOTES_CREATE, PERM_QUOTES_UPDATE, PERM_QUOTES_TRANSITION}
    if role == Role.SALES:
        return sales

    manager = sales | {PERM_QUOTES_DELETE, PERM_OVERRIDE_PRICE}
    if role == Role.MANAGER:
        return manager

    if role in (Role.ADMIN, Role.OWNER):
        return manager | {PERM_FORCE_EDIT, PERM_RATE_CARDS_MANAGE}

    return set()


def build_principal(
    *,
    user_id: str,
    organization_id: str,
    role: Role,
    extra_permissions: Iterable[str] = (),
) -> Principal:
    perms = role_permissions(role) | set(extra_permissions)
    return Principal(
        user_id=user_id,
        organization_id=organization_id,
        role=role,
        permissions=frozenset(perms),
    )


def require_permission(principal: Principal, permission: str) -> None:
    if not principal.can(permission):
        raise PermissionError(
            f"Role {principal.role.value} not permitted for action {permission}."
        )
