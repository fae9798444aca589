"""Logging configuration.

JSON lines in production, a readable single-line format elsewhere. Secrets
are redacted from messages in both modes.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

SENSITIVE_PATTERNS = [
    (re.compile(r"(sk-)[A-Za-z0-9_-]{16,}"), r"\1[REDACTED]"),
    (re.compile(r"(bearer\s+)[\w.-]{16,}", re.IGNORECASE), r"\1[REDACTED]"),
    (
        re.compile(r'(api[_-]?key\s*[=:]\s*)["\']?[\w-]{16,}["\']?', re.IGNORECASE),
        r"\1[REDACTED]",
    ),
]

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access", "faiss")


def redact_sensitive_data(message: str) -> str:
    result = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class JSONFormatter(logging.Formatter):
    """Format records as one JSON object per line, including `extra=` fields."""

    RESERVED_ATTRS = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_sensitive_data(record.getMessage()),
        }
        if record.exc_info:
            log_data["exception"] = redact_sensitive_data(self.formatException(record.exc_info))
        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS:
                continue
            log_data[key] = redact_sensitive_data(value) if isinstance(value, str) else value
        return json.dumps(log_data, default=str)


class RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return redact_sensitive_data(super().format(record))


def setup_logging(*, environment: str = "development", level: str = "INFO") -> None:
    """Configure the root logger. Safe to call more than once."""

    level = level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level = "INFO"

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    if environment == "production":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            RedactingFormatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    root_logger.addHandler(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
