"""
Prometheus metrics for application monitoring.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import generate_latest as generate_latest_openmetrics
from fastapi import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import time


# Request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Ledger metrics
holds_requested_total = Counter(
    'holds_requested_total',
    'Hold requests by outcome (created, merged, or an error code)',
    ['outcome']
)

reservations_created_total = Counter(
    'reservations_created_total',
    'Waitlist reservations created'
)

reservations_promoted_total = Counter(
    'reservations_promoted_total',
    'Waitlist reservations promoted'
)

auto_holds_total = Counter(
    'auto_holds_total',
    'Automatic hold conversions for promoted reservations',
    ['outcome']
)

# Expiry scheduler
sweep_expired_total = Counter(
    'sweep_expired_total',
    'Rows expired by the expiry sweep',
    ['ledger']
)

sweep_failures_total = Counter(
    'sweep_failures_total',
    'Rows or sweeps that failed and were skipped',
    ['ledger']
)

sweep_duration_seconds = Histogram(
    'sweep_duration_seconds',
    'Duration of one expiry sweep pass',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        endpoint = request.url.path
        if endpoint == "/metrics":
            return await call_next(request)

        # Route template keeps label cardinality bounded (/cart/items/{hold_id})
        route = request.scope.get("route")
        endpoint = getattr(route, "path", endpoint)

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(time.perf_counter() - start_time)


def get_metrics_response(openmetrics: bool = False) -> Response:
    """
    Get Prometheus metrics response.

    Args:
        openmetrics: If True, return OpenMetrics format, else Prometheus format
    """
    if openmetrics:
        content = generate_latest_openmetrics()
        content_type = "application/openmetrics-text; version=1.0.0; charset=utf-8"
    else:
        content = generate_latest()
        content_type = CONTENT_TYPE_LATEST

    return Response(content=content, media_type=content_type)
