"""
Flask middleware for request logging and metrics.

- Request id taken from X-Request-ID or generated, echoed in the response
- Request context (id, method, path) attached to every log line
- Per-request counter and latency histogram
"""

import logging
import re
import time
import uuid

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, set_request_context
from monitoring.metrics import metrics

logger = logging.getLogger("firstframe.request")

_ADDRESS_SEGMENT = re.compile(r"^0x[0-9a-fA-F]{40}$")
_PUZZLE_SEGMENT = re.compile(r"^puzzle_[0-9a-f]+$")
_UUID_SEGMENT = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def setup_request_logging(app: Flask) -> None:
    """Install request logging and metrics hooks on a Flask app."""

    @app.before_request
    def before_request():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()
        set_request_context(
            request_id=g.request_id,
            method=request.method,
            path=request.path,
        )

    @app.after_request
    def after_request(response: Response) -> Response:
        _record_request(response.status_code)
        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def teardown_request(exception=None):
        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={"path": request.path, "method": request.method},
            )
        clear_request_context()


def _record_request(status_code: int) -> None:
    duration_ms = 0.0
    if hasattr(g, "start_time"):
        duration_ms = (time.perf_counter() - g.start_time) * 1000

    path = normalize_path(request.path)
    metrics.increment(
        "http_requests_total",
        labels={"method": request.method, "path": path, "status": str(status_code)},
    )
    metrics.timing(
        "http_request_duration_ms",
        duration_ms,
        labels={"method": request.method, "path": path},
    )

    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
        "%s %s -> %d",
        request.method,
        request.path,
        status_code,
        extra={"status_code": status_code, "duration_ms": round(duration_ms, 2)},
    )


def normalize_path(path: str) -> str:
    """Replace ids in a path with placeholders to bound label cardinality."""
    normalized = []
    for part in path.strip("/").split("/"):
        if part.isdigit():
            normalized.append(":id")
        elif _ADDRESS_SEGMENT.match(part):
            normalized.append(":address")
        elif _PUZZLE_SEGMENT.match(part):
            normalized.append(":puzzle_id")
        elif _UUID_SEGMENT.match(part):
            normalized.append(":uuid")
        else:
            normalized.append(part)
    return "/" + "/".join(p for p in normalized if p)
