"""Structured JSON logging with correlation ID support.

One JSON object per line on stdout. Every record carries the app role
(public/worker) so webhook and worker logs can be told apart, and the
correlation ID binding a webhook delivery to the task it enqueued.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id
from .redaction import redact_string


class JsonFormatter(logging.Formatter):
    """JSON formatter with correlation ID, app role and redacted message."""

    def __init__(self, role: str | None = None) -> None:
        super().__init__()
        self._role = role or os.environ.get("APP_ROLE", "public")

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "role": self._role,
            # %-style args bypass safe_log_context; mask them here
            "message": redact_string(record.getMessage()),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.exc_info:
            log_obj["exception"] = redact_string(self.formatException(record.exc_info))

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_obj.update(extra_fields)

        return json.dumps(log_obj, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a logger configured for JSON output.

    Level comes from LOG_LEVEL (default INFO).
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
        logger.propagate = False

    return logger
