from datetime import timedelta

from quote_engine.core.clock import utcnow
from quote_engine.models.idempotency_key import IdempotencyKeyRecord
from quote_engine.services.idempotency_service import IdempotencyService, build_context


def _ctx(key="k-1", body=None, user="u-sales", route="/api/v1/quotes", method="post"):
    return build_context(
        key=key,
        organization_id="acme",
        user_id=user,
        method=method,
        route=route,
        body=body if body is not None else {"title": "a"},
    )


def test_route_includes_method():
    assert _ctx().route == "POST:/api/v1/quotes"


def test_body_hash_ignores_key_order():
    assert _ctx(body={"a": 1, "b": 2}).request_hash == _ctx(body={"b": 2, "a": 1}).request_hash


def test_unknown_key_is_not_a_duplicate(db):
    found = IdempotencyService().check(db, _ctx())
    assert not found.exists
    assert not found.is_duplicate


def test_stored_response_is_replayed(db):
    svc = IdempotencyService()
    svc.store(db, _ctx(), status=201, body={"id": "q-1"})
    db.commit()

    found = svc.check(db, _ctx())
    assert found.is_duplicate
    assert found.response_status == 201
    assert found.response_body == {"id": "q-1"}


def test_same_key_different_body_still_replays(db):
    svc = IdempotencyService()
    svc.store(db, _ctx(body={"title": "a"}), status=201, body={"id": "q-1"})
    db.commit()

    found = svc.check(db, _ctx(body={"title": "b"}))
    assert found.is_duplicate
    assert found.response_body == {"id": "q-1"}


def test_scope_is_key_user_and_route(db):
    svc = IdempotencyService()
    svc.store(db, _ctx(), status=201, body={"id": "q-1"})
    db.commit()

    assert not svc.check(db, _ctx(user="u-other")).is_duplicate
    assert not svc.check(db, _ctx(route="/api/v1/rate-cards")).is_duplicate
    assert not svc.check(db, _ctx(method="patch")).is_duplicate
    assert not svc.check(db, _ctx(key="k-2")).is_duplicate


def test_expired_record_is_ignored_and_replaced(db):
    svc = IdempotencyService(ttl_hours=1)
    then = utcnow() - timedelta(hours=2)
    svc.store(db, _ctx(), status=201, body={"id": "old"}, now=then)
    db.commit()

    assert not svc.check(db, _ctx()).is_duplicate

    svc.store(db, _ctx(), status=201, body={"id": "new"})
    db.commit()
    assert svc.check(db, _ctx()).response_body == {"id": "new"}
    assert db.query(IdempotencyKeyRecord).count() == 1


def test_cleanup_removes_only_expired(db):
    svc = IdempotencyService(ttl_hours=1)
    svc.store(db, _ctx(key="old"), status=201, body={}, now=utcnow() - timedelta(hours=3))
    svc.store(db, _ctx(key="live"), status=201, body={})
    db.commit()

    assert svc.cleanup_expired(db) == 1
    db.commit()
    assert [r.idem_key for r in db.query(IdempotencyKeyRecord).all()] == ["live"]
