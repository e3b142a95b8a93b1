from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import quote_engine.models  # noqa

from quote_engine.core.cache import InMemoryTTLCache, SafeCache
from quote_engine.db.base import Base
from quote_engine.policies.rbac import Role, build_principal
from quote_engine.services.audit_service import DatabaseAuditSink
from quote_engine.services.idempotency_service import IdempotencyService
from quote_engine.services.pricing_resolver import PricingResolver
from quote_engine.services.quote_number import QuoteNumberGenerator
from quote_engine.services.quote_service import QuoteService
from quote_engine.services.quote_versioning import QuoteVersioningService
from quote_engine.services.rate_card_service import RateCardService


@pytest.fixture(scope="function")
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy drive BEGIN so SAVEPOINTs behave
    @event.listens_for(eng, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cache():
    return SafeCache(InMemoryTTLCache())


@pytest.fixture
def rate_card_service(cache):
    return RateCardService(cache, key_prefix="test", card_ttl=60, item_ttl=300, audit=DatabaseAuditSink())


@pytest.fixture
def resolver(rate_card_service):
    return PricingResolver(
        rate_card_service,
        default_tax_rate=Decimal("0.15"),
        default_unit="hour",
        tax_class_rates={"standard": Decimal("0.15"), "reduced": Decimal("0.05"), "exempt": Decimal("0")},
    )


@pytest.fixture
def quote_service(resolver):
    return QuoteService(
        resolver=resolver,
        numbers=QuoteNumberGenerator(default_prefix="Q"),
        versioning=QuoteVersioningService(),
        idempotency=IdempotencyService(ttl_hours=24),
        audit=DatabaseAuditSink(),
    )


@pytest.fixture
def sales():
    return build_principal(user_id="u-sales", organization_id="acme", role=Role.SALES)


@pytest.fixture
def manager():
    return build_principal(user_id="u-manager", organization_id="acme", role=Role.MANAGER)


@pytest.fixture
def admin():
    return build_principal(user_id="u-admin", organization_id="acme", role=Role.ADMIN)


@pytest.fixture
def viewer():
    return build_principal(user_id="u-viewer", organization_id="acme", role=Role.VIEWER)
