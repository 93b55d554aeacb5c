"""
Shared utilities for the FirstFrame API.

Request validation, authentication, rate limiting, error responses and the
service registry every blueprint reads its collaborators from.
"""

import ipaddress
import os
import secrets
import threading
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import jsonify, request

from royalty_errors import RoyaltyError

# ============================================================
# Security Configuration
# ============================================================

API_KEY = os.getenv("FIRSTFRAME_API_KEY", None)
# Authentication is on unless explicitly disabled
API_KEY_REQUIRED = os.getenv("FIRSTFRAME_REQUIRE_AUTH", "true").lower() == "true"

RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))  # seconds
rate_limit_store: dict[str, dict[str, Any]] = {}
_rate_limit_lock = threading.Lock()

MAX_TITLE_LENGTH = 500
MAX_ID_LENGTH = 200


# ============================================================
# Validation Utilities
# ============================================================


def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type | tuple[type, ...]],
    optional_fields: dict[str, type | tuple[type, ...]] | None = None,
    max_lengths: dict[str, int] | None = None,
) -> tuple[bool, str | None]:
    """
    Validate a JSON payload against a simple schema.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data or data[field_name] is None:
            return False, f"Missing required field: {field_name}"
        if not _is_instance(data[field_name], expected_type):
            return False, f"Field '{field_name}' must be of type {_type_name(expected_type)}"

    for field_name, expected_type in (optional_fields or {}).items():
        value = data.get(field_name)
        if value is not None and not _is_instance(value, expected_type):
            return False, f"Field '{field_name}' must be of type {_type_name(expected_type)}"

    for field_name, max_len in (max_lengths or {}).items():
        value = data.get(field_name)
        if isinstance(value, str) and len(value) > max_len:
            return False, f"Field '{field_name}' exceeds maximum length of {max_len}"

    return True, None


def _is_instance(value: Any, expected_type: type | tuple[type, ...]) -> bool:
    # bool is an int subclass; never accept it where an identifier is expected
    if isinstance(value, bool) and bool not in _as_tuple(expected_type):
        return False
    return isinstance(value, expected_type)


def _as_tuple(expected_type: type | tuple[type, ...]) -> tuple[type, ...]:
    return expected_type if isinstance(expected_type, tuple) else (expected_type,)


def _type_name(expected_type: type | tuple[type, ...]) -> str:
    return " or ".join(t.__name__ for t in _as_tuple(expected_type))


def parse_identifier(value: Any) -> int | None:
    """Parse a positive Telegram user id from a path or body value."""
    if isinstance(value, bool):
        return None
    try:
        identifier = int(value)
    except (TypeError, ValueError):
        return None
    return identifier if identifier > 0 else None


def error_response(e: RoyaltyError):
    """Tagged JSON error response for a royalty workflow error."""
    return jsonify(e.to_dict()), e.status_code


# ============================================================
# IP and Rate Limiting Utilities
# ============================================================


def is_valid_ip(ip_str: str) -> bool:
    try:
        ipaddress.ip_address(ip_str.strip())
        return True
    except (ValueError, AttributeError):
        return False


# X-Forwarded-For is only trusted from these proxies
TRUSTED_PROXIES = {
    ip.strip() for ip in os.getenv("FIRSTFRAME_TRUSTED_PROXIES", "").split(",") if ip.strip()
}


def get_client_ip() -> str:
    """
    Client IP address, honouring X-Forwarded-For only from trusted proxies.

    Uses the rightmost address that is not itself a trusted proxy.
    """
    remote_addr = request.remote_addr or "unknown"

    if TRUSTED_PROXIES and remote_addr in TRUSTED_PROXIES:
        xff = request.headers.get("X-Forwarded-For")
        if xff:
            parts = [p.strip() for p in xff.split(",")]
            for ip in reversed(parts):
                if ip and is_valid_ip(ip) and ip not in TRUSTED_PROXIES:
                    return ip

    return remote_addr


def check_rate_limit() -> dict[str, Any] | None:
    """
    Count a request against the client's window.

    Returns:
        None if within limit, error dict if exceeded
    """
    client_ip = get_client_ip()
    current_time = time.time()

    with _rate_limit_lock:
        client_data = rate_limit_store.setdefault(
            client_ip, {"count": 0, "window_start": current_time}
        )

        if current_time - client_data["window_start"] > RATE_LIMIT_WINDOW:
            client_data["count"] = 0
            client_data["window_start"] = current_time

        if client_data["count"] >= RATE_LIMIT_REQUESTS:
            return {
                "error": "Rate limit exceeded",
                "retry_after": int(RATE_LIMIT_WINDOW - (current_time - client_data["window_start"])),
            }

        client_data["count"] += 1
    return None


# ============================================================
# Authentication Decorator
# ============================================================


def require_api_key(f):
    """Decorator to require API key authentication."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not API_KEY_REQUIRED:
            return f(*args, **kwargs)

        provided_key = request.headers.get("X-API-Key")

        if not provided_key:
            return jsonify(
                {"error": "API key required", "hint": "Provide API key in X-API-Key header"}
            ), 401

        if not API_KEY:
            return jsonify(
                {
                    "error": "Server API key not configured",
                    "hint": "Set FIRSTFRAME_API_KEY environment variable",
                }
            ), 503

        if not secrets.compare_digest(provided_key, API_KEY):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)

    return decorated_function


# ============================================================
# Service Registry
# ============================================================


@dataclass
class ServiceRegistry:
    """
    Wired service instances shared by all blueprints.

    Populated once by server.build_services() (or by tests).
    """

    config: Any = None
    storage: Any = None

    ledger: Any = None
    registry: Any = None
    bindings: Any = None

    puzzles: Any = None
    tracker: Any = None

    ledger_client: Any = None
    transport: Any = None

    unlock: Any = None
    payments: Any = None

    def is_ready(self) -> bool:
        return self.ledger is not None and self.unlock is not None and self.payments is not None

    def update(self, other: "ServiceRegistry") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(other, name))


# Global service registry instance
services = ServiceRegistry()
