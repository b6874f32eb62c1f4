"""
Prometheus metrics for the Complisite API.
A dedicated registry keeps /metrics free of the default process collectors.
"""

from prometheus_client import CollectorRegistry, Counter, Histogram

registry = CollectorRegistry(auto_describe=True)

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    registry=registry,
)

diagnostic_probes_total = Counter(
    "diagnostic_probes_total",
    "Diagnostic table probes by suite and outcome",
    ["suite", "status"],
    registry=registry,
)

storage_requests_total = Counter(
    "storage_requests_total",
    "Object storage API calls by operation and outcome",
    ["operation", "outcome"],
    registry=registry,
)
