import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quote_engine.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("[health] database check failed: %s", exc)
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "requestId": getattr(request.state, "request_id", None),
    }
