from celery import Celery
from ..platform.config import settings

celery_app = Celery(
    "atelier",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "sweep-stale-generations-every-10-minutes": {
            "task": "atelier.tasks.generation_tasks.sweep_stale_generations",
            "schedule": 600.0,
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["atelier.tasks"])
