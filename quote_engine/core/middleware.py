import contextvars
import logging
import time
import uuid
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)


class RequestIdLogFilter(logging.Filter):
    """Stamps every log record with the id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Every request gets a request-id (incoming header or a fresh uuid4).
    It is exposed on request.state, bound to the logging context and echoed
    in the response header.
    """

    def __init__(self, app, header_name: str = "X-Request-Id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = rid
        token = _request_id.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[self.header_name] = rid
            logger.info(
                "[http] %s %s -> %s",
                request.method,
                request.url.path,
                response.status_code,
                extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            )
            return response
        finally:
            _request_id.reset(token)
