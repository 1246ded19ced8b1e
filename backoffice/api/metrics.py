"""Prometheus metrics for the back-office API.

HTTP request metrics are recorded by the API middleware. Document metrics
(created, transitions, conversions, payments) are defined next to the code
that changes documents in ``backoffice.documents.service`` and exposed
through the same registry.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Domain errors returned to clients
document_errors_total = Counter(
    "backoffice_document_errors_total",
    "Document engine errors returned by the API",
    ["error"],  # exception class name
)

csv_exports_total = Counter(
    "backoffice_csv_exports_total",
    "Total CSV exports",
    ["document_type"],
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
