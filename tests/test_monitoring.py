"""
Tests for logging redaction, formatters and metrics (src/monitoring/)
"""

import json
import logging
import sys

sys.path.insert(0, "src")

from monitoring.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LoggingContext,
    get_request_context,
    redact_sensitive_data,
    redact_string,
)
from monitoring.metrics import MetricsCollector
from monitoring.middleware import normalize_path

BOT_TOKEN = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"
ADDRESS = "0x" + "1234" + "a" * 32 + "cdef"


def _record(msg, *args, level=logging.INFO, **extra):
    record = logging.LogRecord("royalty_payment", level, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ============================================================
# Redaction Tests
# ============================================================

class TestRedaction:
    """Tests for secret scrubbing."""

    def test_bot_token_in_url(self):
        text = redact_string(f"POST https://api.telegram.org/bot{BOT_TOKEN}/sendVideo")
        assert BOT_TOKEN not in text
        assert "bot[REDACTED_BOT_TOKEN]/sendVideo" in text

    def test_key_value_secrets(self):
        text = redact_string("api_key=abc123 password: hunter2")
        assert "abc123" not in text
        assert "hunter2" not in text

    def test_bearer_token(self):
        assert "xyz" not in redact_string("Authorization: Bearer xyz")

    def test_wallet_address_shortened(self):
        assert redact_string(f"paying from {ADDRESS}") == "paying from 0x1234...cdef"

    def test_transaction_hash_kept(self):
        tx = "0x" + "ab" * 32
        assert redact_string(tx) == tx

    def test_nested_fields(self):
        data = {"config": {"ledger_api_key": "k", "items": [{"bot_token": "t"}]}, "ok": 1}
        redacted = redact_sensitive_data(data)

        assert redacted["config"]["ledger_api_key"] == "[REDACTED]"
        assert redacted["config"]["items"][0]["bot_token"] == "[REDACTED]"
        assert redacted["ok"] == 1

    def test_max_depth(self):
        data = {"a": {"b": {"c": 1}}}
        assert redact_sensitive_data(data, max_depth=1)["a"]["b"] == "[MAX_DEPTH_EXCEEDED]"


# ============================================================
# Formatter Tests
# ============================================================

class TestFormatters:
    """Tests for JSON and console formatters."""

    def test_json_formatter(self):
        line = JSONFormatter().format(_record("Paid %s", ADDRESS, royalty_id="r1"))
        entry = json.loads(line)

        assert entry["level"] == "INFO"
        assert entry["logger"] == "royalty_payment"
        assert entry["message"] == "Paid 0x1234...cdef"
        assert entry["royalty_id"] == "r1"
        assert "location" not in entry

    def test_json_formatter_warning_location(self):
        entry = json.loads(JSONFormatter().format(_record("slow", level=logging.WARNING)))
        assert entry["location"]["line"] == 10

    def test_json_formatter_context(self):
        with LoggingContext(request_id="req-1"):
            entry = json.loads(JSONFormatter().format(_record("hello")))
        assert entry["context"]["request_id"] == "req-1"

    def test_console_formatter_redacts(self):
        line = ConsoleFormatter().format(_record(f"token {BOT_TOKEN}"))
        assert BOT_TOKEN not in line

    def test_logging_context_restores(self):
        with LoggingContext(outer="1"):
            with LoggingContext(inner="2"):
                assert get_request_context()["inner"] == "2"
            assert get_request_context() == {"outer": "1"}
        assert get_request_context() == {}


# ============================================================
# Metrics Tests
# ============================================================

class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_domain_counters_registered(self):
        collector = MetricsCollector()
        assert collector.get_all()["counters"]["royalties_paid"] == 0

    def test_labelled_counters(self):
        collector = MetricsCollector()
        collector.increment("unlocks_rejected", labels={"reason": "pending_royalty"})
        collector.increment("unlocks_rejected", labels={"reason": "invalid_solution"})
        collector.increment("unlocks_rejected", labels={"reason": "pending_royalty"})

        assert collector.get_counter("unlocks_rejected", labels={"reason": "pending_royalty"}) == 2
        assert collector.get_counter_total("unlocks_rejected") == 3

    def test_gauges(self):
        collector = MetricsCollector()
        collector.set_gauge("royalties_unpaid", 4)
        assert collector.get_gauge("royalties_unpaid") == 4

    def test_timer_records_histogram(self):
        collector = MetricsCollector()
        with collector.timer("ledger_settlement_wait_ms"):
            pass

        histogram = collector.get_all()["histograms"]["ledger_settlement_wait_ms"]["_total"]
        assert histogram["count"] == 1

    def test_prometheus_output(self):
        collector = MetricsCollector()
        collector.increment("royalties_paid")
        collector.timing("http_request_duration_ms", 12, labels={"path": "/health"})

        text = collector.to_prometheus()

        assert "# TYPE firstframe_royalties_paid counter" in text
        assert "firstframe_royalties_paid 1" in text
        assert 'firstframe_http_request_duration_ms_bucket{path="/health",le="25"} 1' in text
        assert 'firstframe_http_request_duration_ms_count{path="/health"} 1' in text

    def test_reset(self):
        collector = MetricsCollector()
        collector.increment("royalties_paid", 5)
        collector.reset()
        assert collector.get_counter("royalties_paid") == 0


class TestNormalizePath:
    """Tests for metric path normalization."""

    def test_placeholders(self):
        assert normalize_path("/royalties/pending/123") == "/royalties/pending/:id"
        assert normalize_path(f"/wallet/find/{ADDRESS}") == "/wallet/find/:address"
        assert normalize_path("/puzzle/stats/puzzle_abc123") == "/puzzle/stats/:puzzle_id"
        assert (
            normalize_path("/royalties/pay-info/123e4567-e89b-12d3-a456-426614174000")
            == "/royalties/pay-info/:uuid"
        )

    def test_root(self):
        assert normalize_path("/") == "/"
