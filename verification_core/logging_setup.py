# -*- coding: utf-8 -*-
"""
Logging setup for verification_core.

Features:
- JSON/text logging with consistent fields and RFC3339/UTC timestamps with millis
- Context via contextvars: request_id, session_id, account_id, operation
- Secret redaction (keys and inline patterns)
- Idempotent setup and helper API: setup_logging(), get_logger(), set_context(), clear_context()

No hard dependency on non-stdlib packages.
"""
from __future__ import annotations

import contextvars
import datetime as _dt
import json
import logging
import logging.config
import re
import socket
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "setup_logging",
    "get_logger",
    "set_context",
    "clear_context",
    "get_request_id",
]

SERVICE_NAME = "verification-core"

# -----------------------------
# Context variables
# -----------------------------
_cv_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_cv_session_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("session_id", default=None)
_cv_account_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("account_id", default=None)
_cv_operation: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("operation", default=None)

_CONTEXT_VARS = {
    "request_id": _cv_request_id,
    "session_id": _cv_session_id,
    "account_id": _cv_account_id,
    "operation": _cv_operation,
}


def set_context(
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
    account_id: Optional[str] = None,
    operation: Optional[str] = None,
) -> None:
    """Set correlation context for subsequent log records (per task/coroutine)."""
    if request_id is not None:
        _cv_request_id.set(request_id)
    if session_id is not None:
        _cv_session_id.set(session_id)
    if account_id is not None:
        _cv_account_id.set(account_id)
    if operation is not None:
        _cv_operation.set(operation)


def clear_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(None)


def get_request_id(default: str = "-") -> str:
    return _cv_request_id.get() or default


# -----------------------------
# Helpers
# -----------------------------
_STD_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "asctime",
        "message",
    ]
)

_SECRET_KEY_RE = re.compile(
    r"(?i)(password|passwd|secret|api[_-]?key|access[_-]?key|authorization|token|private[_-]?key|redis_url)"
)
_SECRET_VALUE_INLINE_RE = re.compile(
    r"(?i)\b(password|secret|token|api[_-]?key|access[_-]?key|private[_-]?key)\b\s*[:=]\s*([^\s'\";]+)"
)
_REDIS_DSN_PASSWORD_RE = re.compile(r"(rediss?://[^:/@\s]*:)([^@\s]+)(@)")


def _now_rfc3339() -> str:
    dt = _dt.datetime.now(_dt.timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _hostname() -> str:
    try:
        return socket.gethostname()
    except Exception:
        return "unknown-host"


def _clean_extras(record: logging.LogRecord) -> Dict[str, Any]:
    extras = {k: v for k, v in record.__dict__.items() if k not in _STD_ATTRS}

    def _safe(obj: Any) -> Any:
        try:
            json.dumps(obj)
            return obj
        except Exception:
            return repr(obj)

    return {k: _safe(v) for k, v in extras.items()}


def _redact_value(v: Any) -> Any:
    if isinstance(v, str):
        v = _REDIS_DSN_PASSWORD_RE.sub(r"\1***\3", v)
        return _SECRET_VALUE_INLINE_RE.sub(lambda m: f"{m.group(1)}=***", v)
    if isinstance(v, Mapping):
        return {k: ("***" if _SECRET_KEY_RE.search(str(k)) else _redact_value(val)) for k, val in v.items()}
    if isinstance(v, (list, tuple)):
        return type(v)(_redact_value(x) for x in v)
    return v


# -----------------------------
# Filters
# -----------------------------
class RedactionFilter(logging.Filter):
    """Redact secrets in message and extra fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _redact_value(record.msg)
        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(_redact_value(a) for a in record.args)
            elif isinstance(record.args, Mapping):
                record.args = {k: _redact_value(v) for k, v in record.args.items()}
        for k in list(record.__dict__.keys()):
            if k in _STD_ATTRS:
                continue
            if _SECRET_KEY_RE.search(k):
                record.__dict__[k] = "***"
            else:
                record.__dict__[k] = _redact_value(record.__dict__[k])
        return True


# -----------------------------
# Formatters
# -----------------------------
class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "ts": _now_rfc3339(),
            "level": record.levelname,
            "logger": record.name,
            "service": SERVICE_NAME,
            "host": _hostname(),
            "pid": record.process,
            "message": record.getMessage(),
        }
        base.update({k: var.get() for k, var in _CONTEXT_VARS.items() if var.get()})

        extras = _clean_extras(record)
        if extras:
            base["extra"] = extras

        if record.levelno >= logging.WARNING:
            base["src"] = {
                "file": record.pathname,
                "line": record.lineno,
                "func": record.funcName,
            }

        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)

        return json.dumps(base, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [f"{_now_rfc3339()} {SERVICE_NAME} {record.levelname:<8} {record.name}: {record.getMessage()}"]
        ctx = [f"{k}={var.get()}" for k, var in _CONTEXT_VARS.items() if var.get()]
        if ctx:
            parts.append("[" + " ".join(ctx) + "]")
        if record.exc_info:
            parts.append("\n" + self.formatException(record.exc_info))
        return " ".join(parts)


# -----------------------------
# Public setup
# -----------------------------
_configured = False


def setup_logging(level: str = "INFO", fmt: str = "json", *, force: bool = False) -> None:
    """Configure root logging. Safe to call multiple times."""
    global _configured
    if _configured and not force:
        return

    config_dict = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "text": {"()": TextFormatter},
        },
        "filters": {
            "redact": {"()": RedactionFilter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level.upper(),
                "formatter": "json" if fmt == "json" else "text",
                "stream": "ext://sys.stdout",
                "filters": ["redact"],
            },
        },
        "root": {
            "level": getattr(logging, level.upper(), logging.INFO),
            "handlers": ["console"],
        },
    }
    logging.config.dictConfig(config_dict)

    # httpx logs every request at INFO, including RPC URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or SERVICE_NAME)
