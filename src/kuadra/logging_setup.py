"""Structured logging setup.

Records are emitted as one JSON object per line on stdout, with every
``extra=`` field promoted to a top-level key. A redaction filter masks any
extra field whose key names a credential.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

REDACTED = "***REDACTED***"

# Substrings of extra-field keys whose values are never logged
SENSITIVE_KEY_MARKERS = ("password", "secret_access_key", "secretaccesskey", "token", "credential")

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "kubernetes")

# Attributes every LogRecord carries; anything else came from extra=
_RESERVED_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


class SecretRedactionFilter(logging.Filter):
    """Replace the value of sensitive extra fields with a fixed marker."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in list(record.__dict__):
            if key in _RESERVED_ATTRS:
                continue
            if is_sensitive_key(key):
                setattr(record, key, REDACTED)
        return True


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO, json_output: bool = True) -> None:
    """Configure the root logger.

    Args:
        level: Root log level.
        json_output: Emit JSON lines; plain text otherwise (local runs).
    """
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    handler.addFilter(SecretRedactionFilter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
