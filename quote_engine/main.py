import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from quote_engine.api.v1.router import v1_router
from quote_engine.core.config import get_settings
from quote_engine.core.logging import configure_logging
from quote_engine.core.middleware import RequestIdMiddleware

logger = logging.getLogger(__name__)


async def _store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Store failures have already rolled back; the caller only learns it failed.
    logger.error("[db] %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": "INTERNAL_ERROR", "message": "The request could not be completed."}},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    app.add_exception_handler(SQLAlchemyError, _store_error)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
