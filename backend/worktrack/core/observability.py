"""Prometheus metrics: HTTP traffic plus the gate, geofence and sync counters."""

from __future__ import annotations

import re
import time

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

http_requests_total = Counter(
    "http_server_requests_total", "HTTP requests served", ["method", "path", "status"]
)
http_request_duration_seconds = Histogram(
    "http_server_request_duration_seconds", "Time spent serving a request", ["method", "path"], buckets=LATENCY_BUCKETS
)
http_exceptions_total = Counter(
    "http_server_exceptions_total", "Requests that raised past every handler", ["method", "path", "exception_type"]
)

biometric_attempts_total = Counter(
    "worktrack_biometric_attempts_total", "Biometric verification attempts", ["outcome"]
)
geofence_violations_total = Counter(
    "worktrack_geofence_violations_total", "Geofence violations opened", ["type"]
)
sync_operations_total = Counter(
    "worktrack_sync_operations_total", "Queued operations by the status they ended a drain in", ["status"]
)
sync_queue_pending = Gauge("worktrack_sync_queue_pending", "Operations waiting to be applied")
sync_queue_conflicts = Gauge("worktrack_sync_queue_conflicts", "Operations waiting on conflict resolution")

_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")


def route_label(path: str) -> str:
    """Collapse ids so ``/api/work-sessions/42/end`` shares a series with every other session."""
    return "/".join(_NUMERIC_SEGMENT.sub("/{id}", path).split("/")[:6])


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method, path = request.method, route_label(request.url.path)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            http_exceptions_total.labels(method=method, path=path, exception_type=type(exc).__name__).inc()
            raise
        finally:
            http_requests_total.labels(method=method, path=path, status=status_code).inc()
            http_request_duration_seconds.labels(method=method, path=path).observe(time.perf_counter() - started)


async def metrics_endpoint(request: Request) -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def update_sync_queue_metrics(pending: int, conflicts: int) -> None:
    sync_queue_pending.set(pending)
    sync_queue_conflicts.set(conflicts)
