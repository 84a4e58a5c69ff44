"""
Prometheus metrics for the archive service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Ingestion webhook outcome counter (result)
- Counters for best-effort enrichment that was skipped (context windows,
  identity sources)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: stored, skipped, history_synced, invalid_signature, validation_error, error
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing outcomes",
    labelnames=["result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

context_expansion_failures_total = Counter(
    "context_expansion_failures_total",
    "Context windows skipped while expanding a message list",
)

# source: chats, contacts, lid_map
identity_source_failures_total = Counter(
    "identity_source_failures_total",
    "Identity sources that could not be read while building the sender cache",
    labelnames=["source"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    """Record an ingestion webhook outcome."""
    webhook_requests_total.labels(result=result).inc()


def record_context_expansion_failure() -> None:
    context_expansion_failures_total.inc()


def record_identity_source_failure(source: str) -> None:
    identity_source_failures_total.labels(source=source).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
