from quote_engine.tests.api.conftest import bearer


def test_health_reports_database(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["database"] == "ok"


def test_request_id_is_echoed(client):
    r = client.get("/api/v1/health", headers={"X-Request-Id": "req-abc"})
    assert r.headers["X-Request-Id"] == "req-abc"
    assert r.json()["requestId"] == "req-abc"

    generated = client.get("/api/v1/health").headers["X-Request-Id"]
    assert generated


def test_missing_token_is_rejected(client):
    r = client.get("/api/v1/quotes")
    assert r.status_code in (401, 403)


def test_garbage_token_is_401(client):
    r = client.get("/api/v1/quotes", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_token_without_org_is_401(client):
    r = client.get("/api/v1/quotes", headers=bearer(organization_id=""))
    assert r.status_code == 401


def test_unknown_role_is_401(client):
    r = client.get("/api/v1/quotes", headers=bearer(role="JANITOR"))
    assert r.status_code == 401


def test_extra_permission_claim_is_honoured(client):
    r = client.post(
        "/api/v1/rate-cards",
        json={"name": "Partner", "currency": "USD", "effectiveFrom": "2020-01-01T00:00:00Z"},
        headers=bearer(role="SALES", user_id="u-sales", permissions=["rate_cards.manage"]),
    )
    assert r.status_code == 201
