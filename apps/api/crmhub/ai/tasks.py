from __future__ import annotations

from functools import lru_cache
from typing import Any

from celery.signals import worker_process_init, worker_process_shutdown

from crmhub.ai.clients import EMBED_TASK_NAME, AIProviders, build_providers
from crmhub.ai.service import AIService
from crmhub.core.celery_app import celery_app
from crmhub.core.config import get_settings
from crmhub.core.database import SessionLocal
from crmhub.logging import configure_logging

configure_logging()


@lru_cache(maxsize=1)
def get_worker_providers() -> AIProviders:
    """Provider clients shared by every job this worker process runs."""
    return build_providers(get_settings())


@worker_process_init.connect
def _reset_worker_providers(**_: Any) -> None:
    # Forked children must not reuse HTTP connections opened by the parent.
    get_worker_providers.cache_clear()


@worker_process_shutdown.connect
def _close_worker_providers(**_: Any) -> None:
    if get_worker_providers.cache_info().currsize:
        get_worker_providers().close()
    get_worker_providers.cache_clear()


@celery_app.task(name=EMBED_TASK_NAME, bind=True, acks_late=False)
def embed_task(self, text: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:  # type: ignore[no-untyped-def]
    service = AIService(get_worker_providers(), get_settings())
    session = SessionLocal()
    try:
        result = service.process_embedding_job(session, str(self.request.id), text, metadata)
    finally:
        session.close()
    return result.model_dump()
