"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: per-request count and latency, labelled by route template
- Domain counters for webhook ingest, file sharing and history requests
- init_sentry(): Sentry with bearer tokens and shared secrets scrubbed
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from typing import Any

import sentry_sdk
from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Domain Metrics ───────────────────────────────────────────────────────────

webhook_events_total = Counter(
    "prosody_webhook_events_total",
    "Conferencing-server webhook events accepted for processing",
    ["event_name"],
)

webhook_processing_total = Counter(
    "prosody_webhook_processing_total",
    "Background processing results of accepted webhook events",
    ["outcome"],
)

file_sharing_operations_total = Counter(
    "file_sharing_operations_total",
    "File sharing operations by outcome",
    ["operation", "outcome"],
)

meeting_history_summaries = Histogram(
    "meeting_history_summaries",
    "Meetings returned per meeting history request",
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500),
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


def _endpoint_label(request: Request) -> str:
    """Route template when matched, so session and file ids stay out of labels."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if path:
        return path
    return "unmatched" if request.scope.get("endpoint") is None else request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records Prometheus metrics for every HTTP request except /metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        endpoint = _endpoint_label(request)
        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Sentry Integration ───────────────────────────────────────────────────────

_SCRUBBED_HEADERS = {"authorization", "cookie", "x-api-key"}


def _scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """before_send hook: drop credentials from captured request headers.

    Dashboard tokens, file-sharing tokens and the webhook shared secret all
    travel in the Authorization header.
    """
    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _SCRUBBED_HEADERS:
                headers[name] = "[Filtered]"
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        send_default_pii=False,
        before_send=_scrub_event,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
