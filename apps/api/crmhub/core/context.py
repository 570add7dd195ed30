import uuid
from dataclasses import dataclass, field

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


@dataclass
class RequestContext:
    correlation_id: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str | None = None


def get_request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, "context", None)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attaches a per-request context; the auth dependency fills in the actor."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = RequestContext(correlation_id=getattr(request.state, "correlation_id", None) or "")
        request.state.context = context
        response = await call_next(request)
        response.headers["x-request-id"] = context.request_id
        return response
