"""
Monitoring for FirstFrame: metrics, structured logging and request middleware.

Usage:
    from monitoring import metrics

    metrics.increment("royalties_paid")
    with metrics.timer("ledger_settlement_wait_ms"):
        ...
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging

__all__ = [
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "LoggingContext",
    "setup_request_logging",
]
