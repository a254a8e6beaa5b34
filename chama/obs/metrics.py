"""Prometheus metrics for the API and the balance repair worker."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_LATENCY_SECONDS = Histogram(
    "http_request_latency_seconds",
    "Latency of HTTP requests in seconds.",
    labelnames=("method", "path"),
)
REQUEST_COUNTER = Counter(
    "http_requests_total",
    "Total number of HTTP requests processed.",
    labelnames=("method", "path", "status"),
)
REQUEST_ERROR_COUNTER = Counter(
    "http_request_errors_total",
    "Total number of HTTP requests that resulted in server errors.",
    labelnames=("method", "path", "status"),
)
STK_PUSH_COUNTER = Counter(
    "mpesa_stk_push_total",
    "STK push initiations by result.",
    labelnames=("result",),
)
CALLBACK_OUTCOME_COUNTER = Counter(
    "mpesa_callback_outcomes_total",
    "Gateway callbacks processed, by reconciliation outcome.",
    labelnames=("outcome",),
)
BALANCE_REPAIR_COUNTER = Counter(
    "chama_balance_repairs_total",
    "Ledger rows whose balance increment was applied by the repair job.",
)
PENDING_PURGE_COUNTER = Counter(
    "mpesa_pending_requests_purged_total",
    "Stale pending push requests removed by the retention policy.",
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware that records request metrics for Prometheus scraping."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        method = request.method
        start_time = time.perf_counter()
        status = "500"

        try:
            response = await call_next(request)
            status = str(response.status_code)
            if response.status_code >= 500:
                REQUEST_ERROR_COUNTER.labels(method=method, path=_route_template(request), status=status).inc()
            return response
        except Exception:
            REQUEST_ERROR_COUNTER.labels(method=method, path=_route_template(request), status="500").inc()
            raise
        finally:
            path = _route_template(request)
            latency = time.perf_counter() - start_time
            REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(latency)
            REQUEST_COUNTER.labels(method=method, path=path, status=status).inc()


def _route_template(request: Request) -> str:
    # The router stores the matched route in the shared scope during call_next.
    # Path parameters are ids; label by template to keep cardinality bounded.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


metrics_router = APIRouter(tags=["observability"])


@metrics_router.get("/metrics", include_in_schema=False)
def metrics_endpoint() -> Response:
    """Expose Prometheus metrics for scraping."""
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "BALANCE_REPAIR_COUNTER",
    "CALLBACK_OUTCOME_COUNTER",
    "PENDING_PURGE_COUNTER",
    "PrometheusMiddleware",
    "REQUEST_COUNTER",
    "REQUEST_ERROR_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "STK_PUSH_COUNTER",
    "metrics_endpoint",
    "metrics_router",
]
