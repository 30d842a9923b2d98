"""authcore Logging Configuration."""

import json
import logging
import sys
from typing import Literal

# Human-readable format for development
DEV_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RESERVED_ATTRS = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter.

    Fields passed through ``extra=`` (jti, user_id, reason, ...) are emitted
    as top-level keys so audit-relevant context stays machine-readable.
    """

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


# Library loggers held back from the root level. SQLAlchemy follows DEBUG.
_QUIET_LOGGERS = {
    "uvicorn": logging.WARNING,
    "uvicorn.error": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "structured":
        return JSONFormatter()
    return logging.Formatter(DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    level: str = "INFO",
    format_type: Literal["structured", "dev"] = "dev",
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'structured' emits one JSON object per line, 'dev' is readable
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(format_type))
    logging.root.handlers = [handler]
    logging.root.setLevel(numeric_level)

    for logger_name, quiet_level in _QUIET_LOGGERS.items():
        if logger_name == "sqlalchemy.engine" and numeric_level == logging.DEBUG:
            quiet_level = logging.DEBUG
        logging.getLogger(logger_name).setLevel(quiet_level)

    get_logger("logging").info(
        "Logging configured", extra={"log_level": level.upper(), "log_format": format_type}
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the authcore namespace."""
    return logging.getLogger(f"authcore.{name}")
