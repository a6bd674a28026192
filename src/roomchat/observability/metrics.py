from __future__ import annotations

"""Prometheus metrics for the roomchat FastAPI backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for send runs and provider stream durations.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "roomchat_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

SEND_RUNS = Counter(
    "roomchat_send_runs_total",
    "Send runs by terminal outcome",
    labelnames=("outcome",),
)

PROVIDER_STREAM_SECONDS = Histogram(
    "roomchat_provider_stream_seconds",
    "Time from provider call to last delta",
    labelnames=("provider",),
    buckets=(0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0),
)


def record_run(outcome: str) -> None:
    SEND_RUNS.labels(outcome=outcome).inc()


def observe_provider_stream(provider: str, seconds: float) -> None:
    PROVIDER_STREAM_SECONDS.labels(provider=provider).observe(seconds)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /rooms/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 2 and segs[1] in ("chat", "api"):
        return "/" + "/".join(segs[1:3])
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
