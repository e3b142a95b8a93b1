#quote_engine/services/quote_state_machine.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from quote_engine.core.clock import utcnow
from quote_engine.core.errors import InvalidStatusTransition
from quote_engine.models.enums import QuoteStatus
from quote_engine.models.quote import Quote

S = QuoteStatus

STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    S.draft.value: frozenset({S.pending.value, S.cancelled.value}),
    S.pending.value: frozenset({S.approved.value, S.rejected.value, S.cancelled.value}),
    S.approved.value: frozenset({S.sent.value}),
    S.sent.value: frozenset({S.accepted.value, S.rejected.value}),
    # terminal
    S.accepted.value: frozenset(),
    S.rejected.value: frozenset(),
    S.cancelled.value: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, allowed in STATUS_TRANSITIONS.items() if not allowed)


def is_valid_status_transition(from_status: str, to_status: str) -> bool:
    return to_status in STATUS_TRANSITIONS.get(from_status, frozenset())


def assert_transition(from_status: str, to_status: str) -> None:
    if not is_valid_status_transition(from_status, to_status):
        raise InvalidStatusTransition(from_status, to_status)


def apply_transition(
    quote: Quote,
    to_status: str,
    *,
    actor_id: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Validates current -> to_status against the table, then sets the status and
    the milestone fields that go with it. Returns the previous status.
    Nothing is written to the quote when the transition is refused.
    """
    from_status = quote.status
    assert_transition(from_status, to_status)

    now = now or utcnow()
    quote.status = to_status
    quote.updated_at = now

    if to_status == S.approved.value:
        quote.approved_by = actor_id
        quote.approved_at = now
    elif to_status == S.sent.value:
        quote.sent_at = now
    elif to_status == S.accepted.value:
        quote.accepted_at = now

    return from_status
