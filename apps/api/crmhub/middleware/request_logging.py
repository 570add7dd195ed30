from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crmhub.core.context import get_request_context
from crmhub.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("crmhub.request")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _request_fields(request: Request, status_code: int, duration_ms: float) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "method": request.method,
        "path": resolve_http_path_label(request),
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    context = get_request_context(request)
    if context is not None:
        fields["request_id"] = context.request_id
        fields["user_id"] = context.user_id
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = _request_fields(request, 500, _elapsed_ms(started))
            observe_http_request(request.method, fields["path"], 500, fields["duration_ms"] / 1000)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        # The route is only known once the router has matched the request.
        fields = _request_fields(request, response.status_code, _elapsed_ms(started))
        observe_http_request(request.method, fields["path"], response.status_code, fields["duration_ms"] / 1000)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "http.request", extra=fields)
        return response
