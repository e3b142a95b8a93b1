from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from quote_engine.core.config import get_settings

settings = get_settings()

DATABASE_URL = settings.database_url

_engine_kwargs = {"pool_pre_ping": True, "future": True}
if settings.database_isolation_level:
    _engine_kwargs["isolation_level"] = settings.database_isolation_level

engine = create_engine(DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    # Responses are rendered from the objects a transaction just wrote
    expire_on_commit=False,
    future=True,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    One logical operation = one relational transaction.
    Services only flush; this commits on success and rolls back everything
    on any failure so callers never observe partial state.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
