"""
Prometheus metrics for the SMS chat API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Status webhook outcome counter (result)
- Outbound SMS send outcome counter (result)
- Counter of statuses changed by client polling

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

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: updated, unchanged, not_found, invalid_payload, invalid_signature
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total status webhook processing outcomes",
    labelnames=["result"]
)

# result: accepted, rejected, not_configured
sms_send_total = Counter(
    "sms_send_total",
    "Outbound SMS send attempts by outcome",
    labelnames=["result"]
)

status_refresh_updates_total = Counter(
    "status_refresh_updates_total",
    "Message statuses changed by client-driven polling"
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
    # Normalize path to avoid high-cardinality labels
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
    """Record a status webhook processing outcome."""
    webhook_requests_total.labels(result=result).inc()


def record_sms_send(result: str) -> None:
    """Record an outbound SMS attempt outcome."""
    sms_send_total.labels(result=result).inc()


def record_status_refresh_updates(count: int) -> None:
    if count:
        status_refresh_updates_total.inc(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
