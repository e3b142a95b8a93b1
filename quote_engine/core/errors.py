from __future__ import annotations

from typing import Any, Dict, List, Optional


class QuoteEngineError(Exception):
    """
    Base for business-rule errors raised by the quote engine.

    Every subclass carries a machine-readable code and the HTTP status the
    API layer answers with. Business errors are never retried automatically.
    """

    code: str = "QUOTE_ENGINE_ERROR"
    status_code: int = 400

    def __init__(self, message: str, *, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.errors:
            detail["errors"] = self.errors
        return detail


class ValidationFailed(QuoteEngineError, ValueError):
    code = "VALIDATION_ERROR"
    status_code = 400


class CalculationError(QuoteEngineError, ValueError):
    code = "CALCULATION_ERROR"
    status_code = 400


class QuoteNotFound(QuoteEngineError, LookupError):
    code = "QUOTE_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Quote not found."):
        super().__init__(message)


class QuoteVersionNotFound(QuoteEngineError, LookupError):
    code = "QUOTE_VERSION_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Quote version not found."):
        super().__init__(message)


class RateCardNotFound(QuoteEngineError, LookupError):
    code = "RATE_CARD_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Rate card not found."):
        super().__init__(message)


class RateCardItemNotFound(QuoteEngineError, LookupError):
    code = "RATE_CARD_ITEM_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Rate card item not found."):
        super().__init__(message)


class InvalidStatusTransition(QuoteEngineError, ValueError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid status transition from {from_status} to {to_status}.")
        self.from_status = from_status
        self.to_status = to_status


class QuoteLocked(QuoteEngineError, PermissionError):
    code = "QUOTE_LOCKED"
    status_code = 403


class QuoteNotDeletable(QuoteEngineError, ValueError):
    code = "QUOTE_NOT_DELETABLE"
    status_code = 409


class PricingResolutionFailed(QuoteEngineError, ValueError):
    """
    Raised by the orchestrator when any line failed to resolve.
    `errors` holds the per-line {lineNumber, description, reason} entries.
    """

    code = "PRICING_RESOLUTION_FAILED"
    status_code = 422
