from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from crmhub.ai.clients import build_providers
from crmhub.api.errors import register_exception_handlers
from crmhub.api.routes import router as api_router
from crmhub.core.config import get_settings
from crmhub.core.context import RequestContextMiddleware
from crmhub.core.events import InternalEvent, event_bus
from crmhub.logging import configure_logging
from crmhub.middleware.correlation_id import CorrelationIdMiddleware
from crmhub.middleware.request_logging import RequestLoggingMiddleware
from crmhub.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("crmhub.lifecycle")
_subscriptions_registered = False

_embedding_event_types = [
    "crm.company.created",
    "crm.company.updated",
    "crm.opportunity.created",
    "crm.opportunity.updated",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_embeddable_write(event: InternalEvent) -> None:
    if not get_settings().embed_on_write:
        return
    providers = getattr(app.state, "ai_providers", None)
    payload = event.payload.get("payload") if isinstance(event.payload, dict) else None
    if providers is None or not isinstance(payload, dict) or not payload.get("text"):
        return
    try:
        job_id = providers.queue.enqueue(payload["text"], payload.get("metadata") or {})
    except Exception as exc:
        logger.exception("embedding_auto_enqueue_failed", extra={"event_name": event.name, "error": str(exc)[:500]})
        return
    logger.info("job.enqueued", extra={"event_name": event.name, "job_id": job_id, "job_type": "embedding"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not getattr(app.state, "ai_providers", None):
        app.state.ai_providers = build_providers(get_settings())
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in _embedding_event_types:
            event_bus.subscribe(event_name, _on_embeddable_write)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("crmhub-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
