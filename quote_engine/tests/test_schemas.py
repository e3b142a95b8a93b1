import pytest
from pydantic import ValidationError

from quote_engine.schemas.common import dec, money, pagination
from quote_engine.schemas.quotes import LineItemInput, QuoteCreate
from quote_engine.tests.factories import quote_payload


def _line(**extra):
    return LineItemInput.model_validate({"description": "x", "quantity": "1", **extra})


def test_metadata_accepts_scalar_values():
    line = _line(metadata={"source": "crm", "priority": 2, "rush": True, "ref": None})
    assert line.metadata == {"source": "crm", "priority": 2, "rush": True, "ref": None}


@pytest.mark.parametrize(
    "metadata",
    [
        {"unitPrice": "5"},
        {"total_amount": "5"},
        {"startDate": "2025-01-01"},
        {"billing.status": "x"},
        {"1bad": "x"},
        {"nested": {"a": 1}},
        {"list": [1, 2]},
        {"ratio": 0.5},
        {"long": "x" * 501},
    ],
)
def test_metadata_rejects_business_keys_and_complex_values(metadata):
    with pytest.raises(ValidationError):
        _line(metadata=metadata)


def test_metadata_key_limit():
    with pytest.raises(ValidationError):
        _line(metadata={f"k{i}": i for i in range(51)})


def test_camel_and_snake_names_are_both_accepted():
    assert _line(serviceCategoryId="a").service_category_id == "a"
    assert _line(service_category_id="a").service_category_id == "a"


def test_unknown_fields_are_rejected():
    with pytest.raises(ValidationError):
        _line(colour="red")


def test_percentage_discount_value_is_bounded():
    with pytest.raises(ValidationError):
        _line(discountType="percentage", discountValue="120")


def test_quote_requires_lines_and_a_sane_window():
    with pytest.raises(ValidationError):
        quote_payload(lineItems=[])
    with pytest.raises(ValidationError):
        quote_payload(validUntil="2024-12-31T00:00:00Z")
    with pytest.raises(ValidationError):
        quote_payload(currency="usd")


def test_quote_accepts_minimal_body():
    q = quote_payload()
    assert isinstance(q, QuoteCreate)
    assert q.type.value == "project"


def test_output_helpers():
    assert dec("150.0000") == "150"
    assert dec("0.1500") == "0.15"
    assert dec("1E+2") == "100"
    assert dec(None) is None
    assert money("1.005", "USD") == "1.01"
    assert money("1.5", "JPY") == "2"
    assert pagination(2, 10, 25) == {
        "page": 2,
        "pageSize": 10,
        "total": 25,
        "totalPages": 3,
        "hasNext": True,
        "hasPrev": True,
    }
