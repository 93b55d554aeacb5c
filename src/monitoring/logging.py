"""
Structured logging for FirstFrame.

JSON output for log aggregation in production (LOG_FORMAT=json), coloured
console output in development. Every record carries the current request
context and is scrubbed of secrets before it is written:

- Telegram bot tokens (they appear inside Bot API URLs)
- API keys, gateway keys and bearer tokens
- wallet addresses are shortened to their first and last four hex digits
"""

import json
import logging
import os
import re
import sys
import threading
from datetime import UTC, datetime
from typing import Any

# ============================================================
# Sensitive Data Redaction
# ============================================================

SENSITIVE_PATTERNS = [
    # Telegram bot token, bare or inside https://api.telegram.org/bot<token>/
    (re.compile(r"(bot)?\d{6,12}:[A-Za-z0-9_-]{30,}"), r"\1[REDACTED_BOT_TOKEN]"),
    # Key/value style secrets
    (
        re.compile(
            r"(api[_-]?key|gateway[_-]?key|x-api-key|token|secret|password)"
            r"([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)",
            re.IGNORECASE,
        ),
        r"\1\2[REDACTED]",
    ),
    (re.compile(r"(Bearer\s+)([^\s]+)", re.IGNORECASE), r"\1[REDACTED]"),
    # Wallet addresses (0x + 40 hex): keep first/last 4 chars.
    # Transaction hashes are 64 hex chars and are not matched.
    (re.compile(r"\b(0x)([a-fA-F0-9]{4})[a-fA-F0-9]{32}([a-fA-F0-9]{4})\b"), r"\1\2...\3"),
]

REDACTED_FIELDS = {
    "api_key",
    "apikey",
    "x_api_key",
    "gateway_key",
    "ledger_api_key",
    "bot_token",
    "telegram_bot_token",
    "token",
    "secret",
    "password",
    "authorization",
}

# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "taskName"}


def redact_string(text: str) -> str:
    """Apply every redaction pattern to a string."""
    if not isinstance(text, str):
        return text
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_sensitive_data(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """
    Recursively redact secrets from a value destined for a log line.

    Dict keys named like a secret are blanked entirely; strings go through
    the pattern list.
    """
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        return {
            key: "[REDACTED]"
            if str(key).lower().replace("-", "_") in REDACTED_FIELDS
            else redact_sensitive_data(value, depth + 1, max_depth)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, depth + 1, max_depth) for item in data]
    if isinstance(data, str):
        return redact_string(data)
    return data


# ============================================================
# Request Context
# ============================================================

_request_context = threading.local()


def set_request_context(**kwargs) -> None:
    """Set context values for the current request."""
    if not hasattr(_request_context, "data"):
        _request_context.data = {}
    _request_context.data.update(kwargs)


def clear_request_context() -> None:
    _request_context.data = {}


def get_request_context() -> dict[str, Any]:
    return getattr(_request_context, "data", {})


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRIBUTES}


# ============================================================
# Formatters
# ============================================================


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:

    {"timestamp": "...", "level": "INFO", "logger": "royalty_payment",
     "message": "...", "context": {"request_id": "..."}, ...extras}
    """

    def __init__(self, include_stack_info: bool = True, redact_sensitive: bool = True):
        super().__init__()
        self.include_stack_info = include_stack_info
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if self.redact_sensitive:
            message = redact_string(message)

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }

        if record.levelno >= logging.WARNING:
            log_entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info and self.include_stack_info:
            exception = self.formatException(record.exc_info)
            log_entry["exception"] = redact_string(exception) if self.redact_sensitive else exception

        context = get_request_context()
        if context:
            log_entry["context"] = redact_sensitive_data(context) if self.redact_sensitive else context

        for key, value in _extra_fields(record).items():
            log_entry[key] = redact_sensitive_data(value) if self.redact_sensitive else value

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable, coloured output for development. Also redacted."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET

        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        msg = (
            f"{color}{timestamp} {record.levelname[0]} [{record.name}]{reset} "
            f"{redact_string(record.getMessage())}"
        )

        context = get_request_context()
        if context:
            ctx_str = " ".join(f"{k}={v}" for k, v in redact_sensitive_data(context).items())
            msg += f" {color}({ctx_str}){reset}"

        extras = redact_sensitive_data(_extra_fields(record))
        if extras:
            msg += " [" + ", ".join(f"{k}={v}" for k, v in extras.items()) + "]"

        if record.exc_info:
            msg += "\n" + redact_string(self.formatException(record.exc_info))

        return msg


def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name
        json_output: Use JSON format (defaults to LOG_FORMAT=json)
        log_file: Optional file that always receives JSON lines
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Third-party request logs would carry the bot token in their URLs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggingContext:
    """
    Temporary log context.

    Usage:
        with LoggingContext(royalty_id=royalty.id):
            logger.info("Paying")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self.previous_context = {}

    def __enter__(self):
        self.previous_context = get_request_context().copy()
        set_request_context(**self.context)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        clear_request_context()
        if self.previous_context:
            set_request_context(**self.previous_context)
        return False
