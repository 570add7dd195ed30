from celery import Celery

from crmhub.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "crmhub",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["crmhub.ai.tasks"],
)
celery_app.conf.task_routes = {"crm.embeddings.*": {"queue": "embeddings"}}
