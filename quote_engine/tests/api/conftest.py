import pytest
from fastapi.testclient import TestClient

from quote_engine.core.cache import InMemoryTTLCache, SafeCache
from quote_engine.core.deps import get_cache
from quote_engine.core.security import create_access_token
from quote_engine.db.session import get_db
from quote_engine.main import create_app


@pytest.fixture
def client(session_factory):
    app = create_app()
    cache = SafeCache(InMemoryTTLCache())

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as c:
        yield c


def bearer(role="ADMIN", user_id="u-admin", organization_id="acme", **claims):
    token = create_access_token(
        user_id,
        {"user_id": user_id, "organization_id": organization_id, "role": role, **claims},
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def as_admin():
    return bearer()


@pytest.fixture
def as_sales():
    return bearer(role="SALES", user_id="u-sales")


@pytest.fixture
def as_viewer():
    return bearer(role="VIEWER", user_id="u-viewer")
