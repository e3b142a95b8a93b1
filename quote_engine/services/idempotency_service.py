#quote_engine/services/idempotency_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from quote_engine.core.clock import utcnow
from quote_engine.core.hashing import stable_hash
from quote_engine.models.idempotency_key import IdempotencyKeyRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdempotencyContext:
    key: str
    organization_id: str
    user_id: str
    route: str  # "METHOD:/path"
    request_hash: str


@dataclass(frozen=True)
class IdempotencyCheck:
    exists: bool
    is_duplicate: bool
    response_status: Optional[int] = None
    response_body: Optional[Dict[str, Any]] = None


def build_context(
    *,
    key: str,
    organization_id: str,
    user_id: str,
    method: str,
    route: str,
    body: Any,
) -> IdempotencyContext:
    return IdempotencyContext(
        key=key,
        organization_id=organization_id,
        user_id=user_id,
        route=f"{method.upper()}:{route}",
        request_hash=stable_hash(body if body is not None else {}),
    )


class IdempotencyService:
    def __init__(self, ttl_hours: int = 24):
        self.ttl = timedelta(hours=ttl_hours)

    def _get_live(self, db: Session, ctx: IdempotencyContext, now: datetime) -> Optional[IdempotencyKeyRecord]:
        return db.execute(
            select(IdempotencyKeyRecord).where(
                IdempotencyKeyRecord.idem_key == ctx.key,
                IdempotencyKeyRecord.organization_id == ctx.organization_id,
                IdempotencyKeyRecord.user_id == ctx.user_id,
                IdempotencyKeyRecord.route == ctx.route,
                IdempotencyKeyRecord.expires_at > now,
            )
        ).scalar_one_or_none()

    def check(self, db: Session, ctx: IdempotencyContext, *, now: Optional[datetime] = None) -> IdempotencyCheck:
        """
        Duplicate == same key, org, user and route with an unexpired record.
        The body hash is not part of the match: the key scopes the retry.
        """
        row = self._get_live(db, ctx, now or utcnow())
        if row is None:
            return IdempotencyCheck(exists=False, is_duplicate=False)

        if row.request_hash != ctx.request_hash:
            logger.warning(
                "[idempotency] key reused with a different body key=%s route=%s org=%s",
                ctx.key,
                ctx.route,
                ctx.organization_id,
            )

        return IdempotencyCheck(
            exists=True,
            is_duplicate=True,
            response_status=int(row.response_status),
            response_body=row.response_json,
        )

    def store(
        self,
        db: Session,
        ctx: IdempotencyContext,
        *,
        status: int,
        body: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> IdempotencyKeyRecord:
        """
        Flushed inside the caller's transaction so the stored response commits
        (or rolls back) together with the mutation it describes.
        An expired record for the same scope is replaced.
        """
        now = now or utcnow()
        db.execute(
            delete(IdempotencyKeyRecord).where(
                IdempotencyKeyRecord.idem_key == ctx.key,
                IdempotencyKeyRecord.organization_id == ctx.organization_id,
                IdempotencyKeyRecord.user_id == ctx.user_id,
                IdempotencyKeyRecord.route == ctx.route,
                IdempotencyKeyRecord.expires_at <= now,
            )
        )
        row = IdempotencyKeyRecord(
            idem_key=ctx.key,
            organization_id=ctx.organization_id,
            user_id=ctx.user_id,
            route=ctx.route,
            request_hash=ctx.request_hash,
            response_status=int(status),
            response_json=body,
            created_at=now,
            expires_at=now + self.ttl,
        )
        db.add(row)
        db.flush()
        return row

    def cleanup_expired(self, db: Session, *, now: Optional[datetime] = None) -> int:
        result = db.execute(
            delete(IdempotencyKeyRecord).where(IdempotencyKeyRecord.expires_at <= (now or utcnow()))
        )
        removed = result.rowcount or 0
        if removed:
            logger.info("[idempotency] removed %s expired records", removed)
        return removed
