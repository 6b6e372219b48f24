"""Prometheus metrics middleware for API monitoring."""
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

api_request_duration_seconds = Histogram(
    "api_request_duration_seconds",
    "API request duration in seconds",
    labelnames=["method", "path", "status_code"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

api_requests_total = Counter(
    "api_requests_total",
    "Total API requests",
    labelnames=["method", "path", "status_code"],
)

api_errors_total = Counter(
    "api_errors_total",
    "Total API errors",
    labelnames=["method", "path", "error_type"],
)


def route_template(request: Request) -> str:
    """
    Path label for a request.

    Entitlement URLs embed holder IDs, so the route template
    (``/v1/entitlements/{holder_type}/{holder_id}``) is used instead of
    the raw path. Unmatched paths collapse into one label.
    """
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware for collecting Prometheus metrics on API requests.

    Tracks:
    - Request duration histogram (api_request_duration_seconds)
    - Request counter (api_requests_total)
    - Error counter (api_errors_total)
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        start_time = time.perf_counter()
        path = route_template(request)

        try:
            response = await call_next(request)
        except Exception as exc:
            api_errors_total.labels(method=request.method, path=path, error_type=type(exc).__name__).inc()
            raise

        duration = time.perf_counter() - start_time
        api_request_duration_seconds.labels(
            method=request.method, path=path, status_code=response.status_code
        ).observe(duration)
        api_requests_total.labels(method=request.method, path=path, status_code=response.status_code).inc()

        return response
