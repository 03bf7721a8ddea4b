"""Prometheus metrics for the harvester."""

from prometheus_client import Counter, Histogram, Info

from asos_harvester import __version__

# Application info
app_info = Info("asos_harvester", "ASOS harvester application info")
app_info.info({"version": __version__, "name": "asos-harvester"})

# Extraction metrics
extraction_method_total = Counter(
    "harvester_extraction_method_total",
    "Pages whose products came from each extraction strategy",
    ["page_type", "method"],
)

pages_processed_total = Counter(
    "harvester_pages_processed_total",
    "Total number of pages handed to the orchestrator",
    ["page_type", "outcome"],
)

# Product metrics
products_saved_total = Counter(
    "harvester_products_saved_total",
    "Total number of canonical products accepted for output",
)

products_discarded_total = Counter(
    "harvester_products_discarded_total",
    "Total number of products dropped before output",
    ["reason"],
)

batches_persisted_total = Counter(
    "harvester_batches_persisted_total",
    "Total number of batches handed to persist_batch",
)

# API fallback metrics
api_requests_total = Counter(
    "harvester_api_requests_total",
    "Total number of internal API calls",
    ["endpoint", "status"],
)

api_request_duration_seconds = Histogram(
    "harvester_api_request_duration_seconds",
    "Time spent calling the internal API (including retries)",
    ["endpoint"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)


def record_extraction(page_type: str, method: str):
    """Record which strategy produced a page's products."""
    extraction_method_total.labels(page_type=page_type, method=method).inc()


def record_page(page_type: str, outcome: str):
    """Record a processed page and how it ended."""
    pages_processed_total.labels(page_type=page_type, outcome=outcome).inc()


def record_saved(count: int = 1):
    """Record products accepted for output."""
    products_saved_total.inc(count)


def record_discarded(reason: str, count: int = 1):
    """Record products dropped before output."""
    if count:
        products_discarded_total.labels(reason=reason).inc(count)


def record_batch_persisted():
    """Record a batch handed to the persistence collaborator."""
    batches_persisted_total.inc()


def record_api_call(endpoint: str, success: bool, duration: float):
    """Record an internal API call."""
    status = "success" if success else "error"
    api_requests_total.labels(endpoint=endpoint, status=status).inc()
    api_request_duration_seconds.labels(endpoint=endpoint).observe(duration)
