"""Logging for the support bot.

Records go to stdout as one JSON object per line. Structured fields are passed
as `extra={"context": {...}}` (or `context=...` through a session logger).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

NAMESPACE = "isp_bot"

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.module}:{record.lineno}"

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """Human-readable lines for local runs (LOG_FORMAT=plain)."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            line += " " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install a single stdout handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(PlainFormatter() if fmt == "plain" else JSONFormatter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{NAMESPACE}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's fixed fields with a per-call `context=` kwarg."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        merged = {**self.extra, **(context or {})}
        if merged:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": merged}
        return msg, kwargs


def session_logger(name: str, session_id: Any, client_id: Any = None) -> LoggerAdapter:
    """Logger that tags every record with the chat session it belongs to."""
    fields = {"session_id": session_id}
    if client_id is not None:
        fields["client_id"] = client_id
    return LoggerAdapter(get_logger(name), fields)
