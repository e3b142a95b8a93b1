from quote_engine.models.audit_log import AuditLogRecord
from quote_engine.models.idempotency_key import IdempotencyKeyRecord
from quote_engine.models.quote import Quote, QuoteLineItem
from quote_engine.models.quote_version import QuoteLineItemVersion, QuoteVersion
from quote_engine.models.rate_card import RateCard, RateCardItem

__all__ = [
    "AuditLogRecord",
    "IdempotencyKeyRecord",
    "Quote",
    "QuoteLineItem",
    "QuoteLineItemVersion",
    "QuoteVersion",
    "RateCard",
    "RateCardItem",
]
