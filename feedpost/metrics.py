"""
RSS ingestion metrics.

Counters and the per-item duration histogram live on their own
CollectorRegistry so each application (and each test) gets a clean set.
"""

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

DURATION_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2000, 4000)

__all__ = ["RssMetrics", "CONTENT_TYPE_LATEST", "DURATION_BUCKETS_MS"]


def _label(value, fallback: str) -> str:
    return value if isinstance(value, str) and value else fallback


def _positive_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class RssMetrics:
    """Per-item ingestion counters; the pipeline only writes to them."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.items_total = Counter(
            "rss_items_total",
            "Total number of RSS items encountered during ingestion.",
            registry=self.registry,
        )
        self.items_processed = Counter(
            "rss_items_processed",
            "Number of RSS items processed within the ingestion window.",
            registry=self.registry,
        )
        self.items_skipped = Counter(
            "rss_items_skipped",
            "Number of RSS items skipped according to the reprocess policy.",
            ["policy"],
            registry=self.registry,
        )
        self.items_failed = Counter(
            "rss_items_failed",
            "Number of RSS items that failed during ingestion pipeline.",
            registry=self.registry,
        )
        self.chosen_source = Counter(
            "rss_chosen_source_total",
            "Distribution of raw HTML sources chosen for ingestion.",
            ["source"],
            registry=self.registry,
        )
        self.lead_used = Counter(
            "rss_lead_used_total",
            "Distribution indicating whether a lead paragraph was used.",
            ["used"],
            registry=self.registry,
        )
        self.image_source = Counter(
            "rss_image_source_total",
            "Distribution of selected image sources for articles.",
            ["source"],
            registry=self.registry,
        )
        self.truncated_html = Counter(
            "rss_truncated_html_total",
            "Count of articles with truncated HTML.",
            ["truncated"],
            registry=self.registry,
        )
        self.removed_embeds = Counter(
            "rss_removed_embeds_total",
            "Total number of embeds removed during sanitization.",
            registry=self.registry,
        )
        self.tracker_params_removed = Counter(
            "rss_tracker_params_removed_total",
            "Total number of tracker parameters removed from links.",
            registry=self.registry,
        )
        self.item_duration_ms = Histogram(
            "rss_item_duration_ms",
            "Processing duration per RSS item in milliseconds.",
            buckets=DURATION_BUCKETS_MS,
            registry=self.registry,
        )

    def increment_items_total(self, count: int = 1) -> None:
        if _positive_number(count):
            self.items_total.inc(count)

    def increment_items_processed(self) -> None:
        self.items_processed.inc()

    def increment_items_failed(self) -> None:
        self.items_failed.inc()

    def increment_items_skipped(self, policy: str | None) -> None:
        self.items_skipped.labels(policy=_label(policy, "unknown")).inc()

    def record_chosen_source(self, source: str | None) -> None:
        self.chosen_source.labels(source=_label(source, "unknown")).inc()

    def record_lead_used(self, used: bool) -> None:
        self.lead_used.labels(used="true" if used else "false").inc()

    def record_image_source(self, source: str | None) -> None:
        self.image_source.labels(source=_label(source, "none")).inc()

    def record_truncated(self, truncated: bool) -> None:
        self.truncated_html.labels(truncated="true" if truncated else "false").inc()

    def add_removed_embeds(self, count) -> None:
        if _positive_number(count):
            self.removed_embeds.inc(count)

    def add_tracker_params_removed(self, count) -> None:
        if _positive_number(count):
            self.tracker_params_removed.inc(count)

    def observe_item_duration(self, duration_ms) -> None:
        if isinstance(duration_ms, (int, float)) and duration_ms >= 0:
            self.item_duration_ms.observe(duration_ms)

    def export(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self.registry)
