"""Prometheus metrics for Code Duel.

Provides observability into sandbox executions, duel outcomes and the
real-time transport for monitoring and alerting.
"""

import re
import time
from functools import wraps
from typing import Callable

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    multiprocess,
    REGISTRY,
)
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from codeduel.config import settings


def get_registry() -> CollectorRegistry:
    """Get the appropriate registry for the current mode."""
    if settings.environment == "production":
        # In production with multiple workers, use multiprocess mode
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        return registry
    return REGISTRY


# Application info
APP_INFO = Info("codeduel", "Code Duel application information")
APP_INFO.info({
    "version": "0.1.0",
    "environment": settings.environment,
})


# HTTP Request Metrics
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently being processed",
    ["method", "endpoint"],
)


# WebSocket Metrics
WEBSOCKET_CONNECTIONS = Gauge(
    "websocket_connections_active",
    "Active WebSocket connections",
    ["connection_type"],
)

WEBSOCKET_MESSAGES_TOTAL = Counter(
    "websocket_messages_total",
    "Total WebSocket messages",
    ["direction", "message_type"],  # direction: "inbound", "outbound"
)


# Sandbox Metrics
SANDBOX_EXECUTIONS_TOTAL = Counter(
    "sandbox_executions_total",
    "Total sandbox executions",
    ["language", "status"],
)

SANDBOX_EXECUTION_DURATION = Histogram(
    "sandbox_execution_duration_seconds",
    "Sandbox wall-clock time per execution (compile + run)",
    ["language"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0),
)

SANDBOX_CLEANUP_FAILURES = Counter(
    "sandbox_cleanup_failures_total",
    "Sandbox working directories or containers that could not be removed",
    ["resource"],  # "workdir", "container"
)


# Duel Metrics
SUBMISSIONS_TOTAL = Counter(
    "submissions_total",
    "Total validated submissions",
    ["language", "result"],  # result: "passed", "failed", "error", "timeout"
)

SUBMISSION_TEST_CASES = Histogram(
    "submission_test_cases",
    "Number of test cases run per submission",
    [],
    buckets=(1, 2, 3, 5, 8, 13, 21),
)

DUELS_ACTIVE = Gauge(
    "duels_active",
    "Duels currently running",
)

DUELS_FINISHED_TOTAL = Counter(
    "duels_finished_total",
    "Finished duels",
    ["outcome"],  # "solved", "time_up"
)

REMATCHES_TOTAL = Counter(
    "rematches_total",
    "Rematch negotiation outcomes",
    ["result"],  # "accepted", "failed", "declined", "expired"
)

CHALLENGES_SERVED_TOTAL = Counter(
    "challenges_served_total",
    "Challenges handed out by origin",
    ["origin"],  # "primary", "fallback"
)


# Helper functions for recording metrics
def record_http_request(method: str, endpoint: str, status: int, duration: float) -> None:
    """Record HTTP request metrics."""
    normalized = normalize_endpoint(endpoint)
    HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=normalized, status=status).inc()
    HTTP_REQUEST_DURATION.labels(method=method, endpoint=normalized).observe(duration)


def normalize_endpoint(path: str) -> str:
    """Normalize endpoint path to reduce metric cardinality.

    Replaces UUIDs (dashed or hex) and numeric IDs with placeholders.
    """
    path = re.sub(
        r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
        "{id}",
        path,
        flags=re.IGNORECASE,
    )
    path = re.sub(r"[0-9a-f]{32}", "{id}", path, flags=re.IGNORECASE)
    path = re.sub(r"/\d+(/|$)", "/{id}\\1", path)
    return path


def record_sandbox_execution(language: str, status: str, duration: float) -> None:
    """Record one sandbox invocation."""
    SANDBOX_EXECUTIONS_TOTAL.labels(language=language, status=status).inc()
    SANDBOX_EXECUTION_DURATION.labels(language=language).observe(duration)


def record_cleanup_failure(resource: str) -> None:
    SANDBOX_CLEANUP_FAILURES.labels(resource=resource).inc()


def record_submission(language: str, result: str, test_cases: int) -> None:
    """Record a validated submission."""
    SUBMISSIONS_TOTAL.labels(language=language, result=result).inc()
    SUBMISSION_TEST_CASES.observe(test_cases)


def record_duel_finished(outcome: str) -> None:
    DUELS_FINISHED_TOTAL.labels(outcome=outcome).inc()


def record_rematch(result: str) -> None:
    REMATCHES_TOTAL.labels(result=result).inc()


def record_challenge_served(origin: str) -> None:
    CHALLENGES_SERVED_TOTAL.labels(origin=origin).inc()


def record_websocket_message(direction: str, message_type: str) -> None:
    WEBSOCKET_MESSAGES_TOTAL.labels(direction=direction, message_type=message_type).inc()


def track_websocket_connection(connection_type: str) -> Callable:
    """Decorator to track WebSocket connection lifecycle."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            WEBSOCKET_CONNECTIONS.labels(connection_type=connection_type).inc()
            try:
                return await func(*args, **kwargs)
            finally:
                WEBSOCKET_CONNECTIONS.labels(connection_type=connection_type).dec()
        return wrapper
    return decorator


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to automatically track HTTP metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        normalized = normalize_endpoint(request.url.path)

        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=normalized).inc()
        start_time = time.perf_counter()
        status = 500

        try:
            response = await call_next(request)
            status = response.status_code
        finally:
            duration = time.perf_counter() - start_time
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=normalized).dec()
            record_http_request(method, request.url.path, status, duration)

        return response


async def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics output."""
    registry = get_registry()
    return generate_latest(registry), CONTENT_TYPE_LATEST
