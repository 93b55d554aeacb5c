"""
Health and metrics endpoints.

- /health: service status and storage info
- /health/live: liveness probe
- /health/ready: readiness probe (services wired, storage writable)
- /metrics: Prometheus text exposition
- /metrics/json: the same metrics as JSON
"""

import time

from flask import Blueprint, Response, jsonify

from monitoring import metrics

from .utils import services

core_bp = Blueprint("core", __name__)

_startup_time = time.time()


def _update_dynamic_metrics() -> None:
    if services.ledger is not None:
        metrics.set_gauge("royalties_unpaid", len(services.ledger.get_unpaid()))
    if services.puzzles is not None and hasattr(services.puzzles.store, "__len__"):
        metrics.set_gauge("puzzle_sessions_active", len(services.puzzles.store))


@core_bp.route("/health", methods=["GET"])
def health():
    """Service status and storage backend info."""
    storage_info = services.storage.get_info() if services.storage is not None else None
    return jsonify(
        {
            "status": "healthy",
            "service": "FirstFrame Royalties API",
            "uptime_seconds": round(time.time() - _startup_time, 2),
            "storage": storage_info,
            "ledger_gateway": services.ledger_client is not None,
            "messaging": services.transport is not None,
        }
    )


@core_bp.route("/health/live", methods=["GET"])
def liveness():
    return jsonify({"status": "alive"})


@core_bp.route("/health/ready", methods=["GET"])
def readiness():
    """Ready once services are wired and storage is available."""
    checks = {
        "services": services.is_ready(),
        "storage": services.storage is not None and services.storage.is_available(),
    }
    ready = all(checks.values())
    return jsonify({"status": "ready" if ready else "not_ready", "checks": checks}), (
        200 if ready else 503
    )


@core_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Prometheus-compatible metrics."""
    _update_dynamic_metrics()
    return Response(metrics.to_prometheus(), mimetype="text/plain; charset=utf-8")


@core_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    _update_dynamic_metrics()
    return jsonify(metrics.get_all())
