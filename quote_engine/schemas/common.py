from __future__ import annotations

import re
from decimal import Decimal
from typing import Annotated, Any, Dict, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, StrictBool, StrictInt, StringConstraints
from pydantic.alias_generators import to_camel

from quote_engine.services.pricing_calculator import round_money

METADATA_KEY_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.-]{0,63}$")
METADATA_MAX_KEYS = 50

# Business values live in typed columns, never in metadata.
RESERVED_METADATA_KEYS = frozenset({
    "price", "unitprice", "amount", "total", "totalamount", "subtotal",
    "quantity", "qty", "cost", "unitcost",
    "tax", "taxrate", "taxamount", "discount", "discountamount", "discountvalue",
    "currency", "exchangerate", "status",
    "date", "validfrom", "validuntil", "expiresat", "approvedat", "sentat", "acceptedat",
})
RESERVED_METADATA_SUFFIXES = ("price", "amount", "quantity", "taxrate", "date", "status")


def _normalize_key(key: str) -> str:
    return re.sub(r"[_.\-]", "", key.lower())


def _check_metadata(value: Dict[str, Any]) -> Dict[str, Any]:
    if len(value) > METADATA_MAX_KEYS:
        raise ValueError(f"metadata may hold at most {METADATA_MAX_KEYS} keys")
    for key in value:
        if not METADATA_KEY_RE.match(key):
            raise ValueError(f"invalid metadata key: {key!r}")
        norm = _normalize_key(key)
        if norm in RESERVED_METADATA_KEYS or norm.endswith(RESERVED_METADATA_SUFFIXES):
            raise ValueError(f"metadata key {key!r} is reserved for typed fields")
    return value


MetadataValue = Union[StrictBool, StrictInt, Annotated[str, StringConstraints(strict=True, max_length=500)], None]
Metadata = Annotated[Dict[str, MetadataValue], AfterValidator(_check_metadata)]

CurrencyCode = Annotated[str, StringConstraints(pattern=r"^[A-Z]{3}$")]


class CamelModel(BaseModel):
    """
    Python attributes in snake_case, JSON in camelCase (both accepted on input).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ---------------------------
# Output helpers
# ---------------------------

def dec(value: Optional[Any]) -> Optional[str]:
    """Plain (non-exponent) string with trailing zeros dropped."""
    if value is None:
        return None
    d = Decimal(str(value)).normalize()
    text = format(d, "f")
    return "0" if text in ("-0", "") else text


def money(value: Optional[Any], currency: str) -> Optional[str]:
    if value is None:
        return None
    return str(round_money(value, currency))


def pagination(page: int, page_size: int, total: int) -> Dict[str, Any]:
    total_pages = (total + page_size - 1) // page_size if page_size else 0
    return {
        "page": page,
        "pageSize": page_size,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
