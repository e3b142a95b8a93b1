from datetime import datetime, timezone
from itertools import product

import pytest

from quote_engine.core.errors import InvalidStatusTransition
from quote_engine.models.enums import QuoteStatus
from quote_engine.models.quote import Quote
from quote_engine.services.quote_state_machine import (
    TERMINAL_STATUSES,
    apply_transition,
    is_valid_status_transition,
)

ALLOWED = {
    ("draft", "pending"),
    ("draft", "cancelled"),
    ("pending", "approved"),
    ("pending", "rejected"),
    ("pending", "cancelled"),
    ("approved", "sent"),
    ("sent", "accepted"),
    ("sent", "rejected"),
}

STATUSES = [s.value for s in QuoteStatus]


@pytest.mark.parametrize("from_status,to_status", list(product(STATUSES, STATUSES)))
def test_transition_table_is_exact(from_status, to_status):
    assert is_valid_status_transition(from_status, to_status) is ((from_status, to_status) in ALLOWED)


def test_unknown_status_has_no_transitions():
    assert is_valid_status_transition("archived", "draft") is False
    assert is_valid_status_transition("draft", "archived") is False


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {"accepted", "rejected", "cancelled"}


def test_apply_transition_sets_milestones_in_order():
    q = Quote(status="draft")
    t1 = datetime(2025, 1, 1, tzinfo=timezone.utc)
    t2 = datetime(2025, 1, 2, tzinfo=timezone.utc)
    t3 = datetime(2025, 1, 3, tzinfo=timezone.utc)

    assert apply_transition(q, "pending", actor_id="u1", now=t1) == "draft"
    apply_transition(q, "approved", actor_id="boss", now=t1)
    assert q.approved_by == "boss"
    assert q.approved_at == t1

    apply_transition(q, "sent", actor_id="u1", now=t2)
    assert q.sent_at == t2

    apply_transition(q, "accepted", actor_id="u1", now=t3)
    assert q.accepted_at == t3
    assert q.status == "accepted"


def test_refused_transition_leaves_quote_untouched():
    q = Quote(status="draft")
    with pytest.raises(InvalidStatusTransition) as exc:
        apply_transition(q, "accepted", actor_id="u1")
    assert q.status == "draft"
    assert q.accepted_at is None
    assert exc.value.code == "INVALID_STATUS_TRANSITION"
