"""
Metrics collection for FirstFrame.

Thread-safe in-process counters, gauges and latency histograms, exported as
a dict (for JSON) or in the Prometheus text format served on /metrics.

Domain counters are registered at zero so dashboards see them before the
first event:

    royalties_created, royalties_paid, royalties_claimed,
    royalty_claim_failures, unlocks_granted, unlocks_rejected,
    deliveries_failed, wallet_searches
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

METRIC_PREFIX = "firstframe"

DOMAIN_COUNTERS = (
    "royalties_created",
    "royalties_paid",
    "royalties_claimed",
    "royalty_claim_failures",
    "unlocks_granted",
    "unlocks_rejected",
    "deliveries_failed",
    "wallet_searches",
)

# Latency buckets in milliseconds; settlement waits can take many seconds
DEFAULT_BUCKETS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 120000)


@dataclass
class Histogram:
    """Cumulative-bucket histogram."""

    bounds: tuple[float, ...] = DEFAULT_BUCKETS
    counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.counts:
            self.counts = [0] * (len(self.bounds) + 1)  # last slot is +Inf

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.counts[i] += 1
        self.counts[-1] += 1

    def buckets(self) -> list[tuple[str, int]]:
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.counts, strict=True))


class MetricsCollector:
    """Counters, gauges and histograms with optional labels."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()
        self._register_defaults()

    def _register_defaults(self) -> None:
        for name in DOMAIN_COUNTERS:
            self._counters[name][""] += 0

    @staticmethod
    def _labels_key(labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    # Counters

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._counters[name][self._labels_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters[name].get(self._labels_key(labels), 0)

    def get_counter_total(self, name: str) -> int:
        """Sum of a counter across all label sets."""
        with self._lock:
            return sum(self._counters[name].values())

    # Gauges

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] = value

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges[name].get(self._labels_key(labels), 0.0)

    # Histograms

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        key = self._labels_key(labels)
        with self._lock:
            histogram = self._histograms[name].setdefault(key, Histogram())
            histogram.observe(value_ms)

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        """Time a block in milliseconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            def flatten(values):
                if set(values) == {""}:
                    return values[""]
                return dict(values)

            return {
                "uptime_seconds": time.time() - self._start_time,
                "counters": {name: flatten(v) for name, v in self._counters.items()},
                "gauges": {name: flatten(v) for name, v in self._gauges.items()},
                "histograms": {
                    name: {
                        key or "_total": {
                            "count": h.count,
                            "sum": h.sum,
                            "avg": h.sum / h.count if h.count else 0,
                        }
                        for key, h in histograms.items()
                    }
                    for name, histograms in self._histograms.items()
                },
            }

    def to_prometheus(self) -> str:
        """Prometheus text exposition."""
        lines = []

        def sample(metric: str, key: str, value: Any, extra: str = "") -> str:
            labels = ",".join(part for part in (key, extra) if part)
            return f"{metric}{{{labels}}} {value}" if labels else f"{metric} {value}"

        with self._lock:
            lines.append(f"# HELP {METRIC_PREFIX}_uptime_seconds Time since application start")
            lines.append(f"# TYPE {METRIC_PREFIX}_uptime_seconds gauge")
            lines.append(f"{METRIC_PREFIX}_uptime_seconds {time.time() - self._start_time:.2f}")
            lines.append("")

            for kind, series in (("counter", self._counters), ("gauge", self._gauges)):
                for name, values in series.items():
                    metric = f"{METRIC_PREFIX}_{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    lines.extend(sample(metric, key, value) for key, value in values.items())
                    lines.append("")

            for name, histograms in self._histograms.items():
                metric = f"{METRIC_PREFIX}_{name}"
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in histograms.items():
                    for le, count in hist.buckets():
                        lines.append(sample(f"{metric}_bucket", key, count, f'le="{le}"'))
                    lines.append(sample(f"{metric}_sum", key, f"{hist.sum:.2f}"))
                    lines.append(sample(f"{metric}_count", key, hist.count))
                lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        """Clear everything (tests)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()
            self._register_defaults()


metrics = MetricsCollector()
