"""
Logging helpers for arcle.

All loggers live under the ``arcle`` namespace so host applications can tune
them as a group. Orchestration code logs with a bound context (wallet, intent,
challenge ids) so interleaved flows on the same event loop stay readable.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

LOGGER_NAME = "arcle"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class ContextAdapter(logging.LoggerAdapter):
    """Prefixes every message with its bound ``key=value`` pairs."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        context = " ".join(f"{k}={v}" for k, v in self.extra.items() if v is not None)
        if context:
            return f"[{context}] {msg}", kwargs
        return msg, kwargs


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> logging.Logger:
    """
    Configure the arcle logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Emit one JSON object per line instead of the human readable format

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger of arcle."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)


def bind_logger(logger: logging.Logger, **context: Any) -> ContextAdapter:
    """Wrap ``logger`` so each record carries the given ids."""
    return ContextAdapter(logger, context)


def redact(value: str | None, keep: int = 4) -> str:
    """Mask a secret for log output, keeping only its last ``keep`` characters."""
    if not value:
        return "<none>"
    if len(value) <= keep * 2:
        return "****"
    return f"****{value[-keep:]}"
