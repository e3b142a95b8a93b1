from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from quote_engine.db.base import Base, JSONType
from quote_engine.models.quote import _now


class IdempotencyKeyRecord(Base):
    """
    Stores the response of a mutating request sent with an Idempotency-Key header.

    Scope is strict:
      (idem_key, organization_id, user_id, route) must be unique.
    """
    __tablename__ = "idempotency_key_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    idem_key: Mapped[str] = mapped_column(String(128), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    route: Mapped[str] = mapped_column(String(256), nullable=False)  # e.g. "POST:/api/v1/quotes"

    request_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    response_status: Mapped[int] = mapped_column(Integer, nullable=False, default=200)
    response_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("idem_key", "organization_id", "user_id", "route", name="uq_idem_scope"),
        Index("ix_idem_expires", "expires_at"),
    )
