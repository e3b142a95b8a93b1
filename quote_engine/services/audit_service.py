from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.orm import Session

from quote_engine.core.hashing import canonical_dumps
from quote_engine.models.audit_log import AuditLogRecord

logger = logging.getLogger(__name__)


class AuditAction:
    # Quotes
    QUOTE_CREATED = "quotes.create"
    QUOTE_UPDATED = "quotes.update"
    QUOTE_STATUS_TRANSITION = "quotes.status_transition"
    QUOTE_DELETED = "quotes.delete"

    # Rate cards
    RATE_CARD_CREATED = "rate_cards.create"
    RATE_CARD_UPDATED = "rate_cards.update"
    RATE_CARD_ITEM_CREATED = "rate_card_items.create"
    RATE_CARD_ITEM_UPDATED = "rate_card_items.update"


@dataclass
class AuditEvent:
    action: str
    entity_type: str
    entity_id: str
    organization_id: str
    user_id: str
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    request_id: Optional[str] = None


class AuditSink(Protocol):
    def append(self, db: Session, event: AuditEvent) -> None: ...


def _jsonable(values: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # Decimals / datetimes / UUIDs become strings
    if values is None:
        return None
    return json.loads(canonical_dumps(values))


class DatabaseAuditSink:
    """
    Append-only audit insert inside the caller's transaction.

    The row is written under a SAVEPOINT: if it fails, only the audit row is
    rolled back and the failure is logged. Audit problems never fail the
    business operation.
    """

    def append(self, db: Session, event: AuditEvent) -> None:
        try:
            with db.begin_nested():
                db.add(
                    AuditLogRecord(
                        request_id=event.request_id,
                        organization_id=event.organization_id,
                        user_id=event.user_id,
                        action=event.action,
                        entity_type=event.entity_type,
                        entity_id=event.entity_id,
                        old_values=_jsonable(event.old_values),
                        new_values=_jsonable(event.new_values),
                        event_metadata=_jsonable(event.metadata) or None,
                    )
                )
        except Exception as exc:
            logger.warning(
                "[audit] append failed action=%s entity=%s:%s error=%s",
                event.action,
                event.entity_type,
                event.entity_id,
                exc,
            )
