"""
Configuración de Celery para tareas asíncronas.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "conciliacion",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Argentina/Buenos_Aires",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# Purga horaria de claves de idempotencia vencidas
celery_app.conf.beat_schedule = {
    "idempotency-purge-expired": {
        "task": "idempotency.purge_expired",
        "schedule": crontab(minute=15),
    },
}

# Registrar las tareas de app/tasks/reconciliation_tasks.py
celery_app.autodiscover_tasks(["app.tasks"], related_name="reconciliation_tasks")
