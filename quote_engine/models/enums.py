#quote_engine/models/enums.py
from __future__ import annotations
from enum import Enum


class QuoteStatus(str, Enum):
    draft = "draft"
    pending = "pending"
    approved = "approved"
    sent = "sent"
    accepted = "accepted"
    rejected = "rejected"
    cancelled = "cancelled"


class QuoteType(str, Enum):
    project = "project"
    service = "service"
    product = "product"
    recurring = "recurring"
    one_time = "one_time"


class LineItemType(str, Enum):
    service = "service"
    product = "product"
    material = "material"
    travel = "travel"
    expense = "expense"
    discount = "discount"
    tax = "tax"


class DiscountType(str, Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"
    per_unit = "per_unit"


class PricingSource(str, Enum):
    explicit = "explicit"
    rate_card = "rate_card"
