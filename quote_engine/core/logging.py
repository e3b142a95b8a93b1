import logging
import sys

from pythonjsonlogger import jsonlogger

from quote_engine.core.config import Settings
from quote_engine.core.middleware import RequestIdLogFilter


def configure_logging(settings: Settings) -> None:
    """
    Structured logging (JSON) for the quote engine.
    Every record carries request_id (None outside a request).
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(request_id)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    )
    handler.addFilter(RequestIdLogFilter())
    root.addHandler(handler)

    for name in ("uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(level)
    # SQL echo stays off unless explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
