"""Prometheus-compatible metrics for matchmaking observability.

This module provides metrics collection for monitoring:
- Connection churn (opened/closed, connection lifetime)
- Matchmaking (joins, matches, partner changes, time spent waiting)
- Signaling relay (envelopes relayed and dropped)
- Protocol health (malformed and unknown envelopes)

Metrics are collected in-memory and exposed via the /metrics endpoint of the
health server in Prometheus exposition format.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class HistogramBucket:
    """Histogram bucket for duration distributions."""

    le: float  # Upper bound (less-than-or-equal)
    count: int = 0  # Number of observations <= le


@dataclass
class Histogram:
    """Histogram metric for tracking distributions.

    Uses fixed bucket boundaries for consistent memory footprint.
    """

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)

    # Covers 100ms to 30min, wait and call durations in seconds
    buckets: list[HistogramBucket] = field(
        default_factory=lambda: [
            HistogramBucket(le=0.1),
            HistogramBucket(le=0.5),
            HistogramBucket(le=1.0),
            HistogramBucket(le=2.0),
            HistogramBucket(le=5.0),
            HistogramBucket(le=10.0),
            HistogramBucket(le=30.0),
            HistogramBucket(le=60.0),
            HistogramBucket(le=300.0),
            HistogramBucket(le=1800.0),
            HistogramBucket(le=float("inf")),
        ]
    )

    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        """Record an observation.

        Args:
            value: Observed value (in base units, e.g., seconds)
        """
        self.sum += value
        self.count += 1

        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Calculate approximate quantile (upper bound of the containing bucket).

        Args:
            q: Quantile to calculate (0.0 to 1.0)

        Returns:
            Approximate quantile value, or None if no data
        """
        if self.count == 0:
            return None

        target_rank = q * self.count
        # Bucket counts are cumulative
        for bucket in self.buckets:
            if bucket.count >= target_rank:
                return bucket.le

        return self.buckets[-1].le


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increment counter.

        Args:
            amount: Amount to increment by (default: 1.0)
        """
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        """Set gauge value."""
        self.value = value


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_connection_metrics()
        self._init_matchmaking_metrics()
        self._init_relay_metrics()

        logger.debug("MetricsCollector initialized")

    def _init_connection_metrics(self) -> None:
        """Initialize connection lifecycle metrics."""
        self._counters["connections_opened_total"] = Counter(
            name="connections_opened_total",
            help="Total number of client connections accepted",
        )
        self._counters["connections_closed_total"] = Counter(
            name="connections_closed_total",
            help="Total number of client connections closed",
        )
        self._counters["connections_rejected_total"] = Counter(
            name="connections_rejected_total",
            help="Connections refused because the server was full",
        )
        self._histograms["connection_duration_seconds"] = Histogram(
            name="connection_duration_seconds",
            help="Lifetime of client connections in seconds",
        )
        self._gauges["sessions_connected"] = Gauge(
            name="sessions_connected",
            help="Currently registered sessions",
        )

    def _init_matchmaking_metrics(self) -> None:
        """Initialize matchmaking metrics."""
        self._counters["joins_total"] = Counter(
            name="joins_total",
            help="Total number of accepted join requests",
        )
        self._counters["matches_total"] = Counter(
            name="matches_total",
            help="Total number of pairings formed",
        )
        self._counters["partner_changes_total"] = Counter(
            name="partner_changes_total",
            help="Total number of partner change requests",
        )
        self._counters["leaves_total"] = Counter(
            name="leaves_total",
            help="Total number of explicit matchmaking leaves",
        )
        self._histograms["match_wait_seconds"] = Histogram(
            name="match_wait_seconds",
            help="Time a session spent waiting before being paired",
        )
        self._gauges["sessions_waiting"] = Gauge(
            name="sessions_waiting",
            help="Sessions currently in the waiting pool",
        )
        self._gauges["conversations_active"] = Gauge(
            name="conversations_active",
            help="Pairs currently in a call",
        )

    def _init_relay_metrics(self) -> None:
        """Initialize signaling relay and protocol metrics."""
        self._counters["relayed_messages_total"] = Counter(
            name="relayed_messages_total",
            help="Envelopes forwarded to a partner",
        )
        self._counters["dropped_messages_total"] = Counter(
            name="dropped_messages_total",
            help="Outbound envelopes dropped because the receiver was not writable",
        )
        self._counters["protocol_errors_total"] = Counter(
            name="protocol_errors_total",
            help="Malformed or unknown inbound envelopes",
        )

    # === Connection metrics ===

    def record_connection_opened(self) -> None:
        with self._lock:
            self._counters["connections_opened_total"].inc()

    def record_connection_closed(self, duration_seconds: float) -> None:
        """Record connection close.

        Args:
            duration_seconds: Time since the connection was registered
        """
        with self._lock:
            self._counters["connections_closed_total"].inc()
            self._histograms["connection_duration_seconds"].observe(duration_seconds)

    def record_connection_rejected(self) -> None:
        with self._lock:
            self._counters["connections_rejected_total"].inc()

    # === Matchmaking metrics ===

    def record_join(self) -> None:
        with self._lock:
            self._counters["joins_total"].inc()

    def record_match(self, wait_seconds: float | None = None) -> None:
        """Record a pairing.

        Args:
            wait_seconds: How long the requester waited before being paired
        """
        with self._lock:
            self._counters["matches_total"].inc()
            if wait_seconds is not None:
                self._histograms["match_wait_seconds"].observe(wait_seconds)

    def record_partner_change(self) -> None:
        with self._lock:
            self._counters["partner_changes_total"].inc()

    def record_leave(self) -> None:
        with self._lock:
            self._counters["leaves_total"].inc()

    def update_population(self, connected: int, waiting: int, conversations: int) -> None:
        """Update population gauges from the latest stats snapshot."""
        with self._lock:
            self._gauges["sessions_connected"].set(connected)
            self._gauges["sessions_waiting"].set(waiting)
            self._gauges["conversations_active"].set(conversations)

    # === Relay metrics ===

    def record_relay(self) -> None:
        with self._lock:
            self._counters["relayed_messages_total"].inc()

    def record_dropped_message(self) -> None:
        with self._lock:
            self._counters["dropped_messages_total"].inc()

    def record_protocol_error(self) -> None:
        with self._lock:
            self._counters["protocol_errors_total"].inc()

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics in Prometheus text format for scraping
        """
        with self._lock:
            lines: list[str] = []

            for counter in self._counters.values():
                lines.append(f"# HELP {counter.name} {counter.help}")
                lines.append(f"# TYPE {counter.name} counter")
                labels_str = self._format_labels(counter.labels)
                lines.append(f"{counter.name}{labels_str} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} gauge")
                labels_str = self._format_labels(gauge.labels)
                lines.append(f"{gauge.name}{labels_str} {gauge.value}")

            for histogram in self._histograms.values():
                lines.append(f"# HELP {histogram.name} {histogram.help}")
                lines.append(f"# TYPE {histogram.name} histogram")

                labels_str = self._format_labels(histogram.labels)

                for bucket in histogram.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    bucket_labels = {**histogram.labels, "le": le}
                    bucket_labels_str = self._format_labels(bucket_labels)
                    lines.append(f"{histogram.name}_bucket{bucket_labels_str} {bucket.count}")

                lines.append(f"{histogram.name}_sum{labels_str} {histogram.sum}")
                lines.append(f"{histogram.name}_count{labels_str} {histogram.count}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output (e.g., '{a="1",b="2"}')."""
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    # === Summary statistics ===

    def get_summary(self) -> dict[str, float | None]:
        """Get summary statistics for monitoring dashboard.

        Returns:
            Dictionary with key metrics and percentiles
        """
        with self._lock:
            wait_hist = self._histograms["match_wait_seconds"]
            wait_p50 = wait_hist.quantile(0.50)
            wait_p95 = wait_hist.quantile(0.95)

            return {
                "connections_opened": self._counters["connections_opened_total"].value,
                "connections_closed": self._counters["connections_closed_total"].value,
                "sessions_connected": self._gauges["sessions_connected"].value,
                "sessions_waiting": self._gauges["sessions_waiting"].value,
                "conversations_active": self._gauges["conversations_active"].value,
                "joins": self._counters["joins_total"].value,
                "matches": self._counters["matches_total"].value,
                "partner_changes": self._counters["partner_changes_total"].value,
                "match_wait_p50_s": wait_p50,
                "match_wait_p95_s": wait_p95,
                "relayed_messages": self._counters["relayed_messages_total"].value,
                "dropped_messages": self._counters["dropped_messages_total"].value,
                "protocol_errors": self._counters["protocol_errors_total"].value,
            }


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
