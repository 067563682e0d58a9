"""
Prometheus metrics for the scraper database.

This module provides:
- New row counter per table (derived from the watermark count)
- Stored batch counter per table
- Store query latency histogram (operation)
- HTTP request counter and latency histogram for the read API

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# Rows a batch added, as reported by the watermark count
# table: message, delivered_message
new_rows_total = Counter(
    "scraper_db_new_rows_total",
    "Rows added by stored batches",
    labelnames=["table"]
)

stored_batches_total = Counter(
    "scraper_db_store_batches_total",
    "Batches written with insert-or-update",
    labelnames=["table"]
)

# operation: store_dispatched_messages, store_deliveries, highest_nonce, ...
query_latency_seconds = Histogram(
    "scraper_db_query_latency_seconds",
    "Store operation latency in seconds",
    labelnames=["operation"]
)

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_stored_batch(table: str, new_rows: int) -> None:
    """
    Record a written batch and the rows it added.

    Args:
        table: Table the batch was written to
        new_rows: Watermark count of rows added by the batch
    """
    stored_batches_total.labels(table=table).inc()
    if new_rows:
        new_rows_total.labels(table=table).inc(new_rows)


def time_operation(operation: str):
    """Context manager timing a store operation."""
    return query_latency_seconds.labels(operation=operation).time()


def record_http_request(method: str, route: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method
        route: Route template (e.g. /mailboxes/{origin_domain}/{mailbox}/nonce),
            not the concrete path, to keep label cardinality bounded
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    http_requests_total.labels(
        method=method,
        path=route,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=route
    ).observe(latency_seconds)


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
