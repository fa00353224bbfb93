"""Aplicação Celery: broker Redis, filas dos jobs e agenda periódica (beat)."""
from celery import Celery

from filiacao.core.config import get_settings
from filiacao.services.jobs import JOB_QUEUES

settings = get_settings()

celery_app = Celery(
    "filiacao",
    broker=settings.resolved_broker_url(),
    include=["filiacao.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Sao_Paulo",
    enable_utc=True,
    task_ignore_result=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

# Rotas de filas
celery_app.conf.task_routes = {
    **{kind.value: {"queue": queue} for kind, queue in JOB_QUEUES.items()},
    "filiacao.triage": {"queue": "maintenance"},
    "filiacao.drafts.cleanup": {"queue": "maintenance"},
}

celery_app.conf.beat_schedule = {
    "proposal-triage": {
        "task": "filiacao.triage",
        "schedule": float(settings.triage_interval_seconds),
    },
    "drafts-cleanup": {
        "task": "filiacao.drafts.cleanup",
        "schedule": 3600.0,
    },
}
