from decimal import Decimal

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError

from quote_engine.core.clock import utcnow
from quote_engine.core.errors import (
    InvalidStatusTransition,
    PricingResolutionFailed,
    QuoteNotDeletable,
    ValidationFailed,
)
from quote_engine.models.audit_log import AuditLogRecord
from quote_engine.models.idempotency_key import IdempotencyKeyRecord
from quote_engine.models.quote import Quote
from quote_engine.policies.rbac import Principal, Role
from quote_engine.repositories.quotes import QuoteFilters
from quote_engine.schemas.quotes import CalculateRequest, QuoteUpdate
from quote_engine.services.idempotency_service import build_context
from quote_engine.services.quote_service import _is_retryable_number_conflict
from quote_engine.tests.factories import quote_payload, standard_card


def _ctx(key="create-1", body=None):
    return build_context(
        key=key,
        organization_id="acme",
        user_id="u-sales",
        method="POST",
        route="/api/v1/quotes",
        body=body or {"title": "Website rebuild"},
    )


def test_create_prices_from_rate_card_and_totals_add_up(db, quote_service, sales):
    standard_card(db)
    result = quote_service.create_quote(db, principal=sales, payload=quote_payload())

    assert result.status_code == 201
    body = result.body
    assert body["quoteNumber"] == f"Q-{utcnow().year}-0001"
    assert body["status"] == "draft"
    assert body["subtotal"] == "1500.00"
    assert body["taxAmount"] == "225.00"
    assert body["discountAmount"] == "0.00"
    assert body["totalAmount"] == "1725.00"

    line = body["lineItems"][0]
    assert line["lineNumber"] == 1
    assert line["unitPrice"] == "150"
    assert line["taxRate"] == "0.15"
    assert line["pricingSource"] == "rate_card"
    assert line["serviceCategoryId"] == "consulting"


def test_quote_numbers_increase(db, quote_service, sales):
    standard_card(db)
    numbers = [quote_service.create_quote(db, principal=sales, payload=quote_payload()).body["quoteNumber"] for _ in range(3)]
    year = utcnow().year
    assert numbers == [f"Q-{year}-0001", f"Q-{year}-0002", f"Q-{year}-0003"]
    assert quote_service.quote_number_exists(db, principal=sales, quote_number=numbers[1])


def test_quote_level_discount_applies_after_line_discounts(db, quote_service, sales):
    standard_card(db)
    payload = quote_payload(discountType="percentage", discountValue="10")
    body = quote_service.create_quote(db, principal=sales, payload=payload).body

    assert body["subtotal"] == "1500.00"
    assert body["discountAmount"] == "150.00"
    assert body["taxAmount"] == "225.00"
    assert body["totalAmount"] == "1575.00"


def test_total_identity_holds_over_mixed_lines(db, quote_service, manager):
    standard_card(db)
    payload = quote_payload(
        lineItems=[
            {"description": "Senior consultant", "quantity": "3", "sku": "CONS-SR", "percentageDiscount": "5"},
            {"description": "UX design workshop", "quantity": "1.5", "serviceCategoryId": "design"},
            {"description": "Travel mileage", "quantity": "321", "sku": "TRV-KM"},
            {"description": "Hardware", "quantity": "2", "unitPrice": "49.99", "taxRate": "0.2", "serviceCategoryId": "goods"},
        ],
        discountType="fixed",
        discountValue="25",
    )
    body = quote_service.create_quote(db, principal=manager, payload=payload).body

    total = Decimal(body["totalAmount"])
    assert total == Decimal(body["subtotal"]) - Decimal(body["discountAmount"]) + Decimal(body["taxAmount"])
    assert sum(Decimal(li["subtotal"]) for li in body["lineItems"]) == Decimal(body["subtotal"])
    assert [li["lineNumber"] for li in body["lineItems"]] == [1, 2, 3, 4]
    assert body["lineItems"][3]["pricingSource"] == "explicit"


def test_explicit_price_needs_override_permission(db, quote_service, sales, manager):
    standard_card(db)
    lines = [{"description": "Senior consultant", "quantity": "1", "sku": "CONS-SR", "unitPrice": "99"}]

    as_sales = quote_service.create_quote(db, principal=sales, payload=quote_payload(lineItems=lines)).body
    as_manager = quote_service.create_quote(db, principal=manager, payload=quote_payload(lineItems=lines)).body

    assert as_sales["lineItems"][0]["unitPrice"] == "150"
    assert as_manager["lineItems"][0]["unitPrice"] == "99"


def test_explicit_line_without_category_or_card_is_rejected(db, quote_service, manager):
    standard_card(db)
    lines = [{"description": "Mystery box", "quantity": "1", "unitPrice": "10"}]
    with pytest.raises(ValidationFailed) as err:
        quote_service.create_quote(db, principal=manager, payload=quote_payload(lineItems=lines))
    assert err.value.errors[0]["field"] == "lineItems[0]"


def test_explicit_price_without_any_rate_card_fails_pricing(db, quote_service, manager):
    lines = [
        {"description": "Fixed fee", "quantity": "1", "unitPrice": "500", "serviceCategoryId": "consulting"},
        {"description": "Senior consultant", "quantity": "1", "sku": "CONS-SR"},
    ]
    with pytest.raises(PricingResolutionFailed) as err:
        quote_service.create_quote(db, principal=manager, payload=quote_payload(lineItems=lines))

    assert [e["lineNumber"] for e in err.value.errors] == [1, 2]
    assert db.query(Quote).count() == 0


def test_pricing_failure_writes_nothing(db, quote_service, sales):
    standard_card(db)
    payload = quote_payload(
        lineItems=[
            {"description": "Senior consultant", "quantity": "1", "sku": "CONS-SR"},
            {"description": "Catering for forty", "quantity": "1"},
        ]
    )
    with pytest.raises(PricingResolutionFailed) as err:
        quote_service.create_quote(db, principal=sales, payload=payload, idempotency=_ctx())

    assert err.value.errors == [
        {"lineNumber": 2, "description": "Catering for forty", "reason": "No active rate card item matches description"}
    ]
    assert db.query(Quote).count() == 0
    assert db.query(IdempotencyKeyRecord).count() == 0
    assert db.query(AuditLogRecord).count() == 0


def test_currency_mismatch_fails_pricing(db, quote_service, sales):
    standard_card(db)
    with pytest.raises(PricingResolutionFailed):
        quote_service.create_quote(db, principal=sales, payload=quote_payload(currency="EUR"))


def test_idempotent_create_replays_identical_body(db, quote_service, sales):
    standard_card(db)
    first = quote_service.create_quote(db, principal=sales, payload=quote_payload(), idempotency=_ctx())
    second = quote_service.create_quote(db, principal=sales, payload=quote_payload(), idempotency=_ctx())

    assert not first.replayed
    assert second.replayed
    assert second.status_code == 201
    assert second.body == first.body
    assert db.query(Quote).count() == 1


def test_different_keys_create_different_quotes(db, quote_service, sales):
    standard_card(db)
    a = quote_service.create_quote(db, principal=sales, payload=quote_payload(), idempotency=_ctx("a"))
    b = quote_service.create_quote(db, principal=sales, payload=quote_payload(), idempotency=_ctx("b"))
    assert a.body["id"] != b.body["id"]


def test_full_lifecycle_sets_milestones(db, quote_service, sales, manager):
    standard_card(db)
    qid = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id

    quote_service.transition_status(db, principal=sales, quote_id=qid, status="pending")
    approved = quote_service.transition_status(db, principal=manager, quote_id=qid, status="approved").body
    assert approved["approvedBy"] == "u-manager"
    assert approved["approvedAt"] is not None

    sent = quote_service.transition_status(db, principal=sales, quote_id=qid, status="sent").body
    assert sent["sentAt"] is not None
    accepted = quote_service.transition_status(db, principal=sales, quote_id=qid, status="accepted", notes="signed").body
    assert accepted["status"] == "accepted"
    assert accepted["acceptedAt"] is not None


def test_invalid_transition_is_refused(db, quote_service, sales):
    standard_card(db)
    qid = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id

    with pytest.raises(InvalidStatusTransition):
        quote_service.transition_status(db, principal=sales, quote_id=qid, status="accepted")

    assert quote_service.get_quote_by_id(db, principal=sales, quote_id=qid).status == "draft"


def test_update_replaces_lines_and_recomputes(db, quote_service, sales):
    standard_card(db)
    qid = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id

    payload = QuoteUpdate.model_validate({
        "lineItems": [
            {"description": "Junior consultant", "quantity": "10", "sku": "CONS-JR"},
            {"description": "UX design workshop", "quantity": "2", "sku": "DSN-UX"},
        ]
    })
    body = quote_service.update_quote(db, principal=sales, quote_id=qid, payload=payload).body

    assert [li["lineNumber"] for li in body["lineItems"]] == [1, 2]
    assert body["subtotal"] == "1140.00"
    # 900 * 0.15 + 240 * 0.05
    assert body["taxAmount"] == "147.00"
    assert body["totalAmount"] == "1287.00"


def test_update_refuses_to_clear_required_fields(db, quote_service, sales):
    standard_card(db)
    qid = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id

    with pytest.raises(ValidationFailed):
        quote_service.update_quote(db, principal=sales, quote_id=qid, payload=QuoteUpdate.model_validate({"title": None}))


def test_currency_change_without_lines_is_refused(db, quote_service, sales):
    standard_card(db)
    qid = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id

    with pytest.raises(ValidationFailed) as err:
        quote_service.update_quote(db, principal=sales, quote_id=qid, payload=QuoteUpdate.model_validate({"currency": "JPY"}))
    assert err.value.errors == [{"field": "lineItems", "reason": "required when currency changes"}]

    quote = quote_service.get_quote_by_id(db, principal=sales, quote_id=qid)
    assert quote.currency == "USD"
    assert quote.total_amount == Decimal("1725.00")


def test_currency_change_reprices_supplied_lines(db, quote_service, sales):
    standard_card(db)
    qid = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id

    # same currency is not a change
    same = QuoteUpdate.model_validate({"currency": "USD", "title": "Renamed"})
    assert quote_service.update_quote(db, principal=sales, quote_id=qid, payload=same).body["title"] == "Renamed"

    # the card is priced in USD, so JPY lines cannot resolve
    payload = QuoteUpdate.model_validate({
        "currency": "JPY",
        "lineItems": [{"description": "Senior consultant", "quantity": "1", "sku": "CONS-SR"}],
    })
    with pytest.raises(PricingResolutionFailed):
        quote_service.update_quote(db, principal=sales, quote_id=qid, payload=payload)
    assert quote_service.get_quote_by_id(db, principal=sales, quote_id=qid).currency == "USD"


def test_number_conflict_is_retried_with_a_fresh_number(db, quote_service, sales, monkeypatch):
    standard_card(db)
    taken = quote_service.create_quote(db, principal=sales, payload=quote_payload()).body["quoteNumber"]

    real_generate = quote_service.numbers.generate
    calls = []

    def racing_generate(session, organization_id, *, now=None):
        calls.append(organization_id)
        if len(calls) == 1:
            return taken
        return real_generate(session, organization_id, now=now)

    monkeypatch.setattr(quote_service.numbers, "generate", racing_generate)
    body = quote_service.create_quote(db, principal=sales, payload=quote_payload()).body

    assert len(calls) == 2
    assert body["quoteNumber"] == f"Q-{utcnow().year}-0002"
    assert db.query(Quote).count() == 2


def test_persistent_number_conflict_surfaces_after_retries(db, quote_service, sales, monkeypatch):
    standard_card(db)
    taken = quote_service.create_quote(db, principal=sales, payload=quote_payload()).body["quoteNumber"]
    calls = []

    def stuck_generate(session, organization_id, *, now=None):
        calls.append(organization_id)
        return taken

    monkeypatch.setattr(quote_service.numbers, "generate", stuck_generate)
    with pytest.raises(IntegrityError):
        quote_service.create_quote(db, principal=sales, payload=quote_payload(), idempotency=_ctx())

    assert len(calls) == quote_service.max_number_retries == 3
    assert db.query(Quote).count() == 1
    assert db.query(IdempotencyKeyRecord).count() == 0


def test_other_database_errors_are_not_retried(db, quote_service, sales, monkeypatch):
    standard_card(db)
    calls = []

    def failing_generate(session, organization_id, *, now=None):
        calls.append(organization_id)
        raise IntegrityError("INSERT INTO quotes", {}, Exception("NOT NULL constraint failed: quotes.title"))

    monkeypatch.setattr(quote_service.numbers, "generate", failing_generate)
    with pytest.raises(IntegrityError):
        quote_service.create_quote(db, principal=sales, payload=quote_payload())
    assert len(calls) == 1


def test_retryable_conflict_detection():
    class SerializationFailure(Exception):
        pgcode = "40001"

    number_clash = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: quotes.organization_id, quotes.quote_number"))
    other_clash = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: quote_line_items.line_number"))
    serialization = DBAPIError("UPDATE", {}, SerializationFailure("could not serialize access"))
    other = DBAPIError("SELECT", {}, Exception("connection reset"))

    assert _is_retryable_number_conflict(number_clash)
    assert not _is_retryable_number_conflict(other_clash)
    assert _is_retryable_number_conflict(serialization)
    assert not _is_retryable_number_conflict(other)


def test_number_lookup_requires_view_permission(db, quote_service):
    nobody = Principal(user_id="u-x", organization_id="acme", role=Role.VIEWER, permissions=frozenset())
    with pytest.raises(PermissionError):
        quote_service.quote_number_exists(db, principal=nobody, quote_number="Q-2025-0001")


def test_delete_is_soft_and_limited_to_open_quotes(db, quote_service, sales, manager):
    standard_card(db)
    draft = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id
    approved = quote_service.create_quote(db, principal=sales, payload=quote_payload()).quote.id
    quote_service.transition_status(db, principal=sales, quote_id=approved, status="pending")
    quote_service.transition_status(db, principal=manager, quote_id=approved, status="approved")

    with pytest.raises(PermissionError):
        quote_service.delete_quote(db, principal=sales, quote_id=draft)

    quote_service.delete_quote(db, principal=manager, quote_id=draft)
    assert quote_service.get_quote_by_id(db, principal=manager, quote_id=draft) is None
    assert db.query(Quote).filter(Quote.id == draft).one().deleted_at is not None

    with pytest.raises(QuoteNotDeletable):
        quote_service.delete_quote(db, principal=manager, quote_id=approved)


def test_viewer_cannot_create(db, quote_service, viewer):
    with pytest.raises(PermissionError):
        quote_service.create_quote(db, principal=viewer, payload=quote_payload())


def test_list_filters_and_paginates(db, quote_service, sales):
    standard_card(db)
    ids = []
    for customer in ("cust-1", "cust-1", "cust-2"):
        ids.append(quote_service.create_quote(db, principal=sales, payload=quote_payload(customerId=customer)).quote.id)
    quote_service.transition_status(db, principal=sales, quote_id=ids[0], status="pending")

    items, page = quote_service.list_quotes(db, principal=sales, page=1, page_size=2)
    assert len(items) == 2
    assert page == {"page": 1, "pageSize": 2, "total": 3, "totalPages": 2, "hasNext": True, "hasPrev": False}

    items, _ = quote_service.list_quotes(db, principal=sales, filters=QuoteFilters(customer_id="cust-1"))
    assert {q.id for q in items} == set(ids[:2])

    items, _ = quote_service.list_quotes(db, principal=sales, filters=QuoteFilters(status=["pending"]))
    assert [q.id for q in items] == [ids[0]]

    items, _ = quote_service.list_quotes(db, principal=sales, filters=QuoteFilters(q="0003"))
    assert [q.id for q in items] == [ids[2]]


def test_mutations_are_audited(db, quote_service, sales):
    standard_card(db)
    qid = quote_service.create_quote(db, principal=sales, payload=quote_payload(), request_id="req-7").quote.id
    quote_service.transition_status(db, principal=sales, quote_id=qid, status="pending", notes="ready")

    rows = db.query(AuditLogRecord).filter(AuditLogRecord.entity_type == "quote").order_by(AuditLogRecord.created_at).all()
    assert [r.action for r in rows] == ["quotes.create", "quotes.status_transition"]
    assert rows[0].request_id == "req-7"
    assert rows[0].new_values["totalAmount"] == "1725.00"
    assert rows[1].old_values == {"status": "draft"}
    assert rows[1].new_values == {"status": "pending"}
    assert rows[1].event_metadata == {"notes": "ready"}


def test_calculate_preview_writes_nothing(db, quote_service, sales):
    standard_card(db)
    payload = CalculateRequest.model_validate({
        "currency": "USD",
        "effectiveDate": "2025-06-01T00:00:00Z",
        "lineItems": [
            {"description": "Senior consultant", "quantity": "2", "sku": "CONS-SR"},
            {"description": "Catering for forty", "quantity": "1"},
        ],
    })
    preview = quote_service.calculate_preview(db, principal=sales, payload=payload)

    assert not preview["success"]
    assert preview["effectiveDate"] == "2025-06-01"
    assert [li["lineNumber"] for li in preview["lineItems"]] == [1]
    assert preview["totals"]["totalAmount"] == "345.00"
    assert preview["errors"][0]["lineNumber"] == 2
    assert db.query(Quote).count() == 0
