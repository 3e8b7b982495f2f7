"""
Prometheus metrics for the message board API.

This module provides:
- HTTP request counter (method, path, status)
- Message operation outcome counter (operation, result)
- Request latency histogram (method, path)

All series live in the default prometheus-client registry of the process.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests served by the message board",
    labelnames=["method", "path", "status"]
)

# operation: list, create, get, delete, like
# result: ok, validation_error, not_found, error
message_operations_total = Counter(
    "message_operations_total",
    "Message operation outcomes",
    labelnames=["operation", "result"]
)

# prometheus-client default buckets
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Message board request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Count a served request and observe its latency.

    `path` is the route template (/api/messages/{message_id}), or
    "unmatched" for requests no route handled.
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


def record_message_operation(operation: str, result: str) -> None:
    """Record the outcome of a message operation."""
    message_operations_total.labels(operation=operation, result=result).inc()


def get_metrics() -> bytes:
    """Current registry in Prometheus text format, served at /metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
