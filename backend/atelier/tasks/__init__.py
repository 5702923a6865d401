from .celery_app import celery_app
from .generation_tasks import run_generation, sweep_stale_generations

__all__ = [
    "celery_app",
    "run_generation",
    "sweep_stale_generations",
]
