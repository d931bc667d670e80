from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from kvsettings.lib.redaction import redact

JSON_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
SENSITIVE_KEYS = {"password", "pwd", "secret", "token", "connection_string"}
REDACTED_VALUE = "***REDACTED***"
_STANDARD_RECORD_ATTRS = set(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive extras and credential-looking text from log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for key in SENSITIVE_KEYS:
            if hasattr(record, key):
                setattr(record, key, REDACTED_VALUE)
        if isinstance(record.args, dict):
            record.args = {
                key: (REDACTED_VALUE if key in SENSITIVE_KEYS else value)
                for key, value in record.args.items()
            }
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


class JsonFormatter(logging.Formatter):
    """Emit log records as compact JSON, one object per line."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = self._extract_extras(record)
        if extras:
            payload["context"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True)

    def _extract_extras(self, record: logging.LogRecord) -> dict[str, Any]:
        extras: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_ATTRS or key.startswith("_"):
                continue
            if key in SENSITIVE_KEYS:
                extras[key] = REDACTED_VALUE
            else:
                extras[key] = self._stringify(value)
        return extras

    @staticmethod
    def _stringify(value: Any) -> Any:
        if isinstance(value, (str, int, float, bool)) or value is None:
            return value
        return str(value)


def configure_logging(
    handler_factory: Optional[Callable[[], logging.Handler]] = None,
    *,
    level: int = logging.INFO,
) -> logging.Logger:
    """Configure the root logger with JSON output and an optional extra handler."""

    root = logging.getLogger()
    root.setLevel(level)

    # Logger filters never see records propagated from child loggers
    if not _has_stream_handler(root.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(JsonFormatter(JSON_LOG_FORMAT))
        stream_handler.addFilter(SensitiveDataFilter())
        root.addHandler(stream_handler)

    if handler_factory:
        handler = handler_factory()
        handler.setFormatter(JsonFormatter(JSON_LOG_FORMAT))
        handler.addFilter(SensitiveDataFilter())
        root.addHandler(handler)

    return root


def _has_stream_handler(handlers: list[logging.Handler]) -> bool:
    return any(type(handler) is logging.StreamHandler for handler in handlers)


__all__ = ["JsonFormatter", "configure_logging", "SensitiveDataFilter", "REDACTED_VALUE"]
