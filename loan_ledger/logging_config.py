"""
Structured Logging Configuration Module

JSON log lines for ledger actions. The calculation modules never log; the
service and API layers do, attaching the loan and action to each record.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Ledger context carried on log records, in output order
CONTEXT_FIELDS = ("loan_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unset context fields are left out"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "loan_ledger",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the ledger logger

    Args:
        level: Log level name
        logger_name: Logger to configure; child loggers inherit its handler
        log_format: "json" or "text"
        log_file: Path of a log file; stderr when None

    Returns:
        Configured logger
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring replaces the handler instead of stacking a second one
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = "loan_ledger") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               loan_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None) -> None:
    """
    Log a ledger action with its context attached to the record

    Context values that are None or empty are not attached.
    """
    context = {"loan_id": loan_id, "action": action, "resource": resource, "extra": extra}
    logger.log(
        getattr(logging, level.upper()),
        message,
        extra={name: value for name, value in context.items() if value},
    )
