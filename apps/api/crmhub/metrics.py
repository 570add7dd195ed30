from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

ai_provider_calls_total = Counter(
    "ai_provider_calls_total",
    "AI provider calls by operation and outcome",
    ["operation", "outcome"],
)

ai_provider_retries_total = Counter(
    "ai_provider_retries_total",
    "AI provider retries by operation",
    ["operation"],
)

ai_semantic_search_fallbacks_total = Counter(
    "ai_semantic_search_fallbacks_total",
    "Searches that fell back to keyword-only results",
)

embedding_jobs_total = Counter(
    "embedding_jobs_total",
    "Embedding jobs by status",
    ["status"],
)

embedding_job_duration_seconds = Histogram(
    "embedding_job_duration_seconds",
    "Embedding job duration in seconds",
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_ai_call(operation: str, outcome: str) -> None:
    ai_provider_calls_total.labels(operation=operation, outcome=outcome).inc()


def observe_ai_retry(operation: str) -> None:
    ai_provider_retries_total.labels(operation=operation).inc()


def observe_semantic_fallback() -> None:
    ai_semantic_search_fallbacks_total.inc()


def observe_embedding_job(status: str, duration: float) -> None:
    embedding_jobs_total.labels(status=status).inc()
    embedding_job_duration_seconds.observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
