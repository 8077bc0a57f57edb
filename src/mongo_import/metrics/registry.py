"""
Prometheus metrics for the importer.
Import this module (or `mongo_import.metrics`) at startup to register them.
"""

from prometheus_client import Counter, Gauge, Histogram

# --- Scanner Metrics ---

DOCUMENTS_SCANNED_TOTAL = Counter(
    "mongo_import_documents_scanned_total",
    "Documents read and enqueued by collection scanners",
    ["namespace"],
)

PAGE_ERRORS_TOTAL = Counter(
    "mongo_import_page_errors_total",
    "Failed page queries",
    ["namespace"],
)

BACKPRESSURE_WAITS_TOTAL = Counter(
    "mongo_import_backpressure_waits_total",
    "Times a scanner paused because the queue was above the high-water mark",
    ["namespace"],
)

# --- Publisher Metrics ---

MESSAGES_PUBLISHED_TOTAL = Counter(
    "mongo_import_messages_published_total",
    "Messages handed to the sink",
    ["topic", "outcome"],
)

QUEUE_DEPTH = Gauge(
    "mongo_import_queue_depth",
    "Pending messages in the shared queue",
)

# --- Run Metrics ---

RUN_DURATION_SECONDS = Histogram(
    "mongo_import_run_duration_seconds",
    "Wall time of a full import run",
    ["outcome"],
    buckets=[1, 5, 15, 30, 60, 300, 900, 1800, 3600, 7200],
)


class MetricsRegistry:
    """Structured access to the importer metrics."""

    documents_scanned_total = DOCUMENTS_SCANNED_TOTAL
    page_errors_total = PAGE_ERRORS_TOTAL
    backpressure_waits_total = BACKPRESSURE_WAITS_TOTAL
    messages_published_total = MESSAGES_PUBLISHED_TOTAL
    queue_depth = QUEUE_DEPTH
    run_duration_seconds = RUN_DURATION_SECONDS


# Singleton instance
metrics_registry = MetricsRegistry()
