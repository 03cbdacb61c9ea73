"""
Logging configuration.

Development gets plain text on stderr; production gets one JSON object
per line so the records can be shipped to a log aggregator as-is.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from library_app.core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging in production"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def setup_logging() -> None:
    """Configure the root logger once, at application start"""
    handler = logging.StreamHandler(sys.stderr)
    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.LOG_LEVEL.upper())

    # passlib logs a harmless warning about bcrypt's version attribute
    logging.getLogger("passlib").setLevel(logging.ERROR)
