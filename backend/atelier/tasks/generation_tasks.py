import logging
from sqlalchemy.exc import OperationalError
from .celery_app import celery_app
from ..platform.errors import TransientInfrastructureError

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def run_generation(self, generation_id: str, request_id: str | None = None):
    """Run a pending generation against the image provider."""
    from ..components.generations.executor import execute_generation
    from ..components.integrations.image_provider.service import get_image_provider
    from ..platform.database import SessionLocal
    from ..services.storage_service import build_storage

    db = SessionLocal()
    try:
        status = execute_generation(db, generation_id, get_image_provider(), build_storage())
        logger.info(
            f"Generation {generation_id} finished with status {status}",
            extra={"request_id": request_id or self.request.id},
        )
        return {"generation_id": generation_id, "status": status}
    except (TransientInfrastructureError, OperationalError) as exc:
        # Provider and storage errors are already failed and refunded inside
        # execute_generation; what reaches here is the database being unreachable.
        logger.error(
            f"Generation {generation_id} hit a transient error: {exc}",
            extra={"request_id": request_id or self.request.id},
        )
        raise self.retry(exc=exc)
    finally:
        db.close()


@celery_app.task
def sweep_stale_generations():
    """Periodic task: fail and refund generations abandoned by a crashed worker."""
    from ..components.generations.reconciliation import fail_stale_generations
    from ..platform.database import SessionLocal

    db = SessionLocal()
    try:
        failed = fail_stale_generations(db)
        logger.info(f"Stale generation sweep failed {failed} generation(s)")
        return {"failed": failed}
    finally:
        db.close()
