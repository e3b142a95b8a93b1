from datetime import datetime, timezone

import pytest

from quote_engine.models.quote import Quote
from quote_engine.services.quote_number import (
    QuoteNumberGenerator,
    format_quote_number,
    parse_quote_number,
    validate_quote_number,
)

Y2025 = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _store(db, number, org="acme", deleted=False):
    q = Quote(
        organization_id=org,
        quote_number=number,
        customer_id="c1",
        title="t",
        valid_from=Y2025,
        valid_until=Y2025,
        currency="USD",
        created_by="u1",
        deleted_at=Y2025 if deleted else None,
    )
    db.add(q)
    db.commit()
    return q


def test_first_number_of_year(db):
    gen = QuoteNumberGenerator()
    assert gen.generate(db, "acme", now=Y2025) == "Q-2025-0001"


def test_sequence_increments(db):
    gen = QuoteNumberGenerator()
    first = gen.generate(db, "acme", now=Y2025)
    _store(db, first)
    second = gen.generate(db, "acme", now=Y2025)
    assert second == "Q-2025-0002"
    assert parse_quote_number(second).sequence > parse_quote_number(first).sequence


def test_scan_is_per_org_and_year(db):
    _store(db, "Q-2025-0007", org="other")
    _store(db, "Q-2024-0042")
    assert QuoteNumberGenerator().generate(db, "acme", now=Y2025) == "Q-2025-0001"


def test_malformed_numbers_are_ignored(db):
    _store(db, "Q-2025-0003")
    _store(db, "Q-2025-abc")
    _store(db, "legacy-17")
    assert QuoteNumberGenerator().generate(db, "acme", now=Y2025) == "Q-2025-0004"


def test_deleted_quotes_are_not_scanned(db):
    _store(db, "Q-2025-0001")
    _store(db, "Q-2025-0002", deleted=True)
    assert QuoteNumberGenerator().generate(db, "acme", now=Y2025) == "Q-2025-0002"


def test_sequence_grows_past_four_digits(db):
    _store(db, "Q-2025-9999")
    number = QuoteNumberGenerator().generate(db, "acme", now=Y2025)
    assert number == "Q-2025-10000"
    assert validate_quote_number(number)


def test_per_org_prefix(db):
    gen = QuoteNumberGenerator(prefixes={"acme": "ACM"})
    assert gen.generate(db, "acme", now=Y2025) == "ACM-2025-0001"
    assert gen.generate(db, "globex", now=Y2025) == "Q-2025-0001"


def test_invalid_prefix_rejected(db):
    gen = QuoteNumberGenerator(default_prefix="q1")
    with pytest.raises(ValueError):
        gen.generate(db, "acme", now=Y2025)


def test_parse_round_trip(db):
    number = QuoteNumberGenerator(default_prefix="QT").generate(db, "acme", now=Y2025)
    parsed = parse_quote_number(number)
    assert (parsed.prefix, parsed.year, parsed.sequence) == ("QT", 2025, 1)
    assert format_quote_number(parsed.prefix, parsed.year, parsed.sequence) == number


@pytest.mark.parametrize("value", ["", "Q-25-0001", "q-2025-0001", "Q-2025-001", "Q_2025_0001", "TOOLONG-2025-0001"])
def test_validate_rejects(value):
    assert validate_quote_number(value) is False
    assert parse_quote_number(value) is None


def test_number_exists(db):
    _store(db, "Q-2025-0005")
    gen = QuoteNumberGenerator()
    assert gen.quote_number_exists(db, "acme", "Q-2025-0005") is True
    assert gen.quote_number_exists(db, "other", "Q-2025-0005") is False
