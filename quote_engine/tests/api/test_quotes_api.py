import uuid

from quote_engine.core.clock import utcnow
from quote_engine.models.quote import Quote
from quote_engine.tests.api.conftest import bearer
from quote_engine.tests.factories import standard_card


def _body(**overrides):
    data = {
        "customerId": "cust-1",
        "title": "Website rebuild",
        "validFrom": "2025-01-01T00:00:00Z",
        "validUntil": "2025-03-31T00:00:00Z",
        "currency": "USD",
        "lineItems": [{"description": "Senior consultant", "quantity": "10", "sku": "CONS-SR"}],
    }
    data.update(overrides)
    return data


def test_create_and_fetch_quote(client, db, as_sales):
    standard_card(db)
    r = client.post("/api/v1/quotes", json=_body(), headers=as_sales)
    assert r.status_code == 201
    created = r.json()
    assert created["quoteNumber"] == f"Q-{utcnow().year}-0001"
    assert created["totalAmount"] == "1725.00"

    fetched = client.get(f"/api/v1/quotes/{created['id']}", headers=as_sales)
    assert fetched.status_code == 200
    assert fetched.json()["lineItems"][0]["unitPrice"] == "150"


def test_idempotent_create_replays_byte_identical_response(client, db, session_factory, as_sales):
    standard_card(db)
    headers = {**as_sales, "Idempotency-Key": "create-42"}

    first = client.post("/api/v1/quotes", json=_body(), headers=headers)
    second = client.post("/api/v1/quotes", json=_body(), headers=headers)

    assert first.status_code == second.status_code == 201
    assert first.content == second.content
    with session_factory() as s:
        assert s.query(Quote).count() == 1


def test_without_key_every_post_creates(client, db, as_sales):
    standard_card(db)
    a = client.post("/api/v1/quotes", json=_body(), headers=as_sales).json()
    b = client.post("/api/v1/quotes", json=_body(), headers=as_sales).json()
    assert a["id"] != b["id"]


def test_blank_idempotency_key_is_400(client, as_sales):
    r = client.post("/api/v1/quotes", json=_body(), headers={**as_sales, "Idempotency-Key": "  "})
    assert r.status_code == 400


def test_pricing_failure_is_422_with_line_errors(client, db, as_sales):
    standard_card(db)
    r = client.post(
        "/api/v1/quotes",
        json=_body(lineItems=[{"description": "Catering for forty", "quantity": "1"}]),
        headers=as_sales,
    )
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["code"] == "PRICING_RESOLUTION_FAILED"
    assert detail["errors"][0]["lineNumber"] == 1


def test_schema_errors_are_422(client, as_sales):
    r = client.post("/api/v1/quotes", json=_body(lineItems=[]), headers=as_sales)
    assert r.status_code == 422

    r = client.post("/api/v1/quotes", json=_body(validUntil="2024-01-01T00:00:00Z"), headers=as_sales)
    assert r.status_code == 422

    r = client.post("/api/v1/quotes", json=_body(metadata={"unitPrice": 5}), headers=as_sales)
    assert r.status_code == 422


def test_viewer_cannot_create(client, as_viewer):
    r = client.post("/api/v1/quotes", json=_body(), headers=as_viewer)
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "FORBIDDEN"


def test_unknown_quote_is_404(client, as_sales):
    r = client.get(f"/api/v1/quotes/{uuid.uuid4()}", headers=as_sales)
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "QUOTE_NOT_FOUND"


def test_quotes_are_isolated_per_organization(client, db, as_sales):
    standard_card(db)
    qid = client.post("/api/v1/quotes", json=_body(), headers=as_sales).json()["id"]

    other = bearer(role="ADMIN", user_id="u-x", organization_id="globex")
    assert client.get(f"/api/v1/quotes/{qid}", headers=other).status_code == 404


def test_status_flow_and_invalid_transition(client, db, as_sales, as_admin):
    standard_card(db)
    qid = client.post("/api/v1/quotes", json=_body(), headers=as_sales).json()["id"]

    bad = client.post(f"/api/v1/quotes/{qid}/status", json={"status": "accepted"}, headers=as_sales)
    assert bad.status_code == 409
    assert bad.json()["detail"]["code"] == "INVALID_STATUS_TRANSITION"

    for status in ("pending", "approved", "sent", "accepted"):
        r = client.post(f"/api/v1/quotes/{qid}/status", json={"status": status}, headers=as_sales)
        assert r.status_code == 200
        assert r.json()["status"] == status


def test_locked_edit_and_forced_edit(client, db, as_sales, as_admin):
    standard_card(db)
    qid = client.post("/api/v1/quotes", json=_body(), headers=as_sales).json()["id"]
    client.post(f"/api/v1/quotes/{qid}/status", json={"status": "pending"}, headers=as_sales)
    client.post(f"/api/v1/quotes/{qid}/status", json={"status": "approved"}, headers=as_sales)

    locked = client.patch(f"/api/v1/quotes/{qid}", json={"title": "x"}, headers=as_sales)
    assert locked.status_code == 403
    assert locked.json()["detail"]["code"] == "QUOTE_LOCKED"

    forced = client.patch(
        f"/api/v1/quotes/{qid}",
        json={"title": "Website rebuild v2", "changeReason": "scope change"},
        headers=as_admin,
    )
    assert forced.status_code == 200

    versions = client.get(f"/api/v1/quotes/{qid}/versions", headers=as_sales).json()["versions"]
    assert [v["versionNumber"] for v in versions] == [1]
    assert versions[0]["changeReason"] == "scope change"

    one = client.get(f"/api/v1/quotes/{qid}/versions/{versions[0]['id']}", headers=as_sales).json()
    assert one["snapshot"]["title"] == "Website rebuild"
    assert len(one["lineItems"]) == 1


def test_delete_rules(client, db, as_sales, as_admin):
    standard_card(db)
    qid = client.post("/api/v1/quotes", json=_body(), headers=as_sales).json()["id"]

    assert client.delete(f"/api/v1/quotes/{qid}", headers=as_sales).status_code == 403
    assert client.delete(f"/api/v1/quotes/{qid}", headers=as_admin).status_code == 204
    assert client.get(f"/api/v1/quotes/{qid}", headers=as_admin).status_code == 404


def test_list_with_filters(client, db, as_sales):
    standard_card(db)
    for customer in ("cust-1", "cust-2", "cust-2"):
        client.post("/api/v1/quotes", json=_body(customerId=customer), headers=as_sales)

    r = client.get("/api/v1/quotes", params={"customerId": "cust-2", "pageSize": 1}, headers=as_sales)
    assert r.status_code == 200
    data = r.json()
    assert len(data["items"]) == 1
    assert data["pagination"]["total"] == 2
    assert data["pagination"]["hasNext"] is True


def test_number_exists(client, db, as_sales):
    standard_card(db)
    number = client.post("/api/v1/quotes", json=_body(), headers=as_sales).json()["quoteNumber"]

    assert client.get("/api/v1/quotes/number-exists", params={"number": number}, headers=as_sales).json()["exists"]
    assert not client.get("/api/v1/quotes/number-exists", params={"number": "Q-1999-0001"}, headers=as_sales).json()["exists"]


def test_calculate_is_a_dry_run(client, db, session_factory, as_sales):
    standard_card(db)
    r = client.post(
        "/api/v1/quotes/calculate",
        json={"currency": "USD", "lineItems": [{"description": "Senior consultant", "quantity": "2", "sku": "CONS-SR"}]},
        headers=as_sales,
    )
    assert r.status_code == 200
    assert r.json()["totals"]["totalAmount"] == "345.00"
    with session_factory() as s:
        assert s.query(Quote).count() == 0
