"""Logging setup for adapter processes.

Logs always go to stderr: stdout carries protocol messages when an adapter
runs on the stdio transport.
"""

import json
import logging
import os
import re
import sys
import traceback
from datetime import datetime, timezone
from typing import Optional, TextIO

ROOT_LOGGER = "mcp_adapters"

LOGS_AS_JSON = os.getenv("LOGS_AS_JSON", "").lower() in ("1", "true", "yes", "on")

_SECRET_KV_RE = re.compile(
    r"(\b(?:api[_-]?key|authorization|secret|password|token)\b\s*[:=]\s*[\"']?)([^\"'\s;,]+)([\"']?)",
    re.IGNORECASE,
)
_BEARER_RE = re.compile(r"(Bearer\s+)([A-Za-z0-9._\-~+/=]+)", re.IGNORECASE)
_KEY_HEADER_RE = re.compile(r"(Key\s+)([A-Za-z0-9._\-:]{8,})")


def sanitize_log_message(message: str) -> str:
    """Redact credentials that may appear in log text."""
    if not isinstance(message, str) or not message:
        return message
    msg = _BEARER_RE.sub(lambda m: m.group(1) + "***REDACTED***", message)
    msg = _SECRET_KV_RE.sub(lambda m: m.group(1) + "***REDACTED***" + m.group(3), msg)
    msg = _KEY_HEADER_RE.sub(lambda m: m.group(1) + "***REDACTED***", msg)
    return msg


class RedactingFilter(logging.Filter):
    """Rewrites each record's message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        sanitized = sanitize_log_message(message)
        if sanitized != message:
            record.msg = sanitized
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "source": f"{record.filename}:{record.lineno} {record.funcName}",
        }
        if record.exc_info:
            base["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "trace": traceback.format_exception(*record.exc_info),
            }
        return json.dumps(base, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    json_format: Optional[bool] = None,
    stream: Optional[TextIO] = None
) -> logging.Logger:
    """Configure the package logger.

    Safe to call more than once; the previous handler is replaced.

    Args:
        level: Log level name
        json_format: Emit JSON lines (defaults to ``LOGS_AS_JSON``)
        stream: Output stream (defaults to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_mcp_adapters", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._mcp_adapters = True
    if LOGS_AS_JSON if json_format is None else json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    handler.addFilter(RedactingFilter())

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger


def set_level(level: str) -> None:
    logging.getLogger(ROOT_LOGGER).setLevel(level.upper())
