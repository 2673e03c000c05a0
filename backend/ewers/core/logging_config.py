"""
Structured logging configuration.

Provides:
    • JSON log lines (production, or LOG_FORMAT=json)
    • Coloured console lines with key=value context (development)
    • Request-scoped context set by the request middleware
    • A redaction filter that masks credential-looking tokens

═══════════════════════════════════════════════════════════════════════════
WHAT GETS LOGGED
═══════════════════════════════════════════════════════════════════════════

    Field          Source                     Example
    ────────────   ────────────────────────   ──────────────────────
    request_id     middleware context         3f9c1a0b5e2d4c71
    surface        middleware context         external
    event          extra=                     alert.created
    webhook_id     extra=                     wh_91ab02cd11ef
    api_key_id     extra=                     key_0c2f7e1a9b33
    channel        extra=                     sms_twilio
    reason         extra=                     key_revoked

Key values, webhook secrets and signatures are never passed to a logger;
the redaction filter is a backstop for values that slip into a message.

Usage:
    from backend.ewers.core.logging_config import setup_logging, get_logger

    setup_logging(settings)
    logger = get_logger(__name__)
    logger.info("Webhook delivered", extra={"webhook_id": "wh_1", "event": "alert.created"})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.ewers.core.config import Settings, settings as default_settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})

# Extra attributes copied into log output when present on the record
STRUCTURED_FIELDS = (
    "event",
    "webhook_id",
    "api_key_id",
    "owner_id",
    "alert_id",
    "channel",
    "recipient_count",
    "success_count",
    "failure_count",
    "reason",
    "duration_ms",
    "status_code",
    "endpoint",
)

# 32+ hex chars: the shape of generated key values and webhook secrets
_SECRET_PATTERN = re.compile(r"\b([0-9a-fA-F]{4})[0-9a-fA-F]{28,}\b")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped context; call with no arguments to clear it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _structured(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: getattr(record, k) for k in STRUCTURED_FIELDS if hasattr(record, k)}


def mask_secrets(text: str) -> str:
    return _SECRET_PATTERN.sub(r"\1…", text)


class RedactingFilter(logging.Filter):
    """Masks long hex tokens in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        ctx = get_request_context()
        if ctx:
            entry["context"] = ctx
        entry.update(_structured(record))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
        )

        request_id = get_request_context().get("request_id")
        if request_id:
            line += f" [{request_id[:8]}]"
        line += f" {record.name}: {record.getMessage()}"

        fields = _structured(record)
        fields.pop("duration_ms", None)
        if fields:
            line += "  " + " ".join(f"{k}={v}" for k, v in fields.items())

        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ── Setup ──

def setup_logging(config: Optional[Settings] = None) -> None:
    """Install a single stdout handler on the root logger."""
    config = config or default_settings
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if config.json_logs else PrettyFormatter())
    handler.addFilter(RedactingFilter())
    root.addHandler(handler)

    # Outbound provider and webhook calls are logged by their callers
    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if config.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    """Get a named logger — call once per module."""
    return logging.getLogger(name)
