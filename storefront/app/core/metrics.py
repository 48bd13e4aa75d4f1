"""
Prometheus metrics: HTTP traffic plus pricing, shipping, catalog and cache counters.
"""
import time

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST as OPENMETRICS_CONTENT_TYPE
from prometheus_client.openmetrics.exposition import generate_latest as generate_latest_openmetrics
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

METRICS_PATH = "/metrics"

# HTTP
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Pricing: operation is final_price, lowest_price, unit_price, ...
price_calculations_total = Counter(
    'price_calculations_total',
    'Total number of price calculations',
    ['operation']
)

# Shipping: result is success, error or no_provider
shipping_option_requests_total = Counter(
    'shipping_option_requests_total',
    'Total number of shipping option requests',
    ['result']
)

category_hierarchy_repairs_total = Counter(
    'category_hierarchy_repairs_total',
    'Categories moved back to root because their parent chain looped'
)

# Reference data cache: key_space is the first segment of the key (shipping, catalog)
cache_lookups_total = Counter(
    'cache_lookups_total',
    'Reference data cache lookups',
    ['key_space', 'result']
)


def _endpoint_label(request: Request) -> str:
    # Route template keeps label cardinality bounded (/products/{product_id} not /products/17)
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Count requests and observe their duration per route template."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            endpoint = _endpoint_label(request)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(time.perf_counter() - started)

        return response


def get_metrics_response(openmetrics: bool = False) -> Response:
    """Render every registered metric in Prometheus text or OpenMetrics format."""
    if openmetrics:
        return Response(content=generate_latest_openmetrics(), media_type=OPENMETRICS_CONTENT_TYPE)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
