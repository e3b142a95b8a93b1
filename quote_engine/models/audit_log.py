from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from quote_engine.db.base import Base, JSONType
from quote_engine.models.quote import _now


class AuditLogRecord(Base):
    """
    Audit trail record.
    - Append-only (never UPDATE)
    - Stores actor, org scope, action, the entity touched and old/new values.
    """
    __tablename__ = "audit_log_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    # Correlation
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    # Actor / strict scoping
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # What happened
    action: Mapped[str] = mapped_column(String(96), nullable=False)  # e.g., quotes.status_transition
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    old_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    event_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)

    __table_args__ = (
        Index("ix_audit_org_entity", "organization_id", "entity_type", "entity_id"),
        Index("ix_audit_action", "action"),
        Index("ix_audit_created", "created_at"),
    )
