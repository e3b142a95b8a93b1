from __future__ import annotations

from fastapi import HTTPException

from quote_engine.core.errors import QuoteEngineError


def to_http(exc: Exception) -> HTTPException:
    """
    Business errors -> HTTPException with {code, message, errors?}.
    """
    if isinstance(exc, QuoteEngineError):
        return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail={"code": "FORBIDDEN", "message": str(exc)})
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": str(exc)})
    raise exc
