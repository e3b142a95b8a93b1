#quote_engine/services/quote_number.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from quote_engine.core.clock import utcnow
from quote_engine.repositories.quotes import QuoteRepository

logger = logging.getLogger(__name__)

QUOTE_NUMBER_RE = re.compile(r"^([A-Z]{1,5})-(\d{4})-(\d{4,})$")
SEQUENCE_WIDTH = 4


@dataclass(frozen=True)
class ParsedQuoteNumber:
    prefix: str
    year: int
    sequence: int


def validate_quote_number(value: str) -> bool:
    return bool(value) and QUOTE_NUMBER_RE.match(value) is not None


def parse_quote_number(value: str) -> Optional[ParsedQuoteNumber]:
    m = QUOTE_NUMBER_RE.match(value or "")
    if not m:
        return None
    return ParsedQuoteNumber(prefix=m.group(1), year=int(m.group(2)), sequence=int(m.group(3)))


def format_quote_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year:04d}-{sequence:0{SEQUENCE_WIDTH}d}"


class QuoteNumberGenerator:
    """
    {PREFIX}-{YEAR}-{SEQUENCE}, e.g. Q-2025-0001.

    The next sequence is max(existing for org/prefix/year) + 1, read inside the
    caller's transaction. Stored numbers that don't fit the pattern are skipped.
    Two concurrent creates can read the same max; the unique index on
    (organization_id, quote_number) rejects the loser, which the caller retries.
    """

    def __init__(
        self,
        *,
        default_prefix: str = "Q",
        prefixes: Optional[Dict[str, str]] = None,
        prefix_resolver: Optional[Callable[[str], str]] = None,
    ):
        self.default_prefix = default_prefix
        self.prefixes = dict(prefixes or {})
        self._resolver = prefix_resolver

    def prefix_for(self, organization_id: str) -> str:
        if self._resolver is not None:
            prefix = self._resolver(organization_id)
        else:
            prefix = self.prefixes.get(organization_id, self.default_prefix)
        if not re.fullmatch(r"[A-Z]{1,5}", prefix or ""):
            raise ValueError(f"Invalid quote number prefix: {prefix!r}")
        return prefix

    def generate(self, db: Session, organization_id: str, *, now: Optional[datetime] = None) -> str:
        prefix = self.prefix_for(organization_id)
        year = (now or utcnow()).year

        pattern = re.compile(rf"^{re.escape(prefix)}-{year}-(\d+)$")
        highest = 0
        for number in QuoteRepository(db).quote_numbers(organization_id, like=f"{prefix}-{year}-%"):
            m = pattern.match(number or "")
            if not m:
                continue
            highest = max(highest, int(m.group(1)))

        number = format_quote_number(prefix, year, highest + 1)
        logger.debug("[quote_number] org=%s next=%s", organization_id, number)
        return number

    def quote_number_exists(self, db: Session, organization_id: str, quote_number: str) -> bool:
        return QuoteRepository(db).number_exists(organization_id, quote_number)
