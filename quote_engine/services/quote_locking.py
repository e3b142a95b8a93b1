from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from quote_engine.models.enums import QuoteStatus
from quote_engine.policies.rbac import PERM_FORCE_EDIT, Principal

EDITABLE_STATUSES = frozenset({QuoteStatus.draft.value, QuoteStatus.pending.value})


@dataclass(frozen=True)
class LockResult:
    is_locked: bool
    can_force_edit: bool
    requires_versioning: bool
    reason: Optional[str] = None


def check_lock(status: str, principal: Principal) -> LockResult:
    """
    draft / pending: free to edit.
    Anything else is locked. A caller holding force-edit may still edit,
    but the pre-edit state has to be snapshotted first.
    """
    if status in EDITABLE_STATUSES:
        return LockResult(is_locked=False, can_force_edit=False, requires_versioning=False)

    if principal.can(PERM_FORCE_EDIT):
        return LockResult(
            is_locked=True,
            can_force_edit=True,
            requires_versioning=True,
            reason=f"Quote is {status}; editing creates a new version.",
        )

    return LockResult(
        is_locked=True,
        can_force_edit=False,
        requires_versioning=False,
        reason=f"Quote cannot be edited in status {status}.",
    )
