"""Hands a started generation to whatever runs it.

With Celery disabled the generation runs in-process after the response is
sent; otherwise it is queued for the worker.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Callable, Optional

from fastapi import BackgroundTasks, Depends

from ...platform.config import settings
from ...platform.database import SessionLocal
from ...platform.request_context import get_request_id
from ...services.storage_service import ObjectStorage, build_storage, get_storage
from ..integrations.image_provider.service import get_image_provider
from .executor import execute_generation

logger = logging.getLogger(__name__)

GenerationDispatcher = Callable[[str, Optional[BackgroundTasks]], None]


def run_generation_inline(generation_id: str, storage: Optional[ObjectStorage] = None) -> str:
    db = SessionLocal()
    try:
        return execute_generation(db, generation_id, get_image_provider(), storage or build_storage())
    finally:
        db.close()


def dispatch_generation(
    generation_id: str,
    background_tasks: Optional[BackgroundTasks] = None,
    storage: Optional[ObjectStorage] = None,
) -> None:
    if settings.MVP_DISABLE_CELERY:
        if background_tasks is not None:
            background_tasks.add_task(run_generation_inline, generation_id, storage)
        else:
            run_generation_inline(generation_id, storage)
        return
    from ...tasks.generation_tasks import run_generation

    run_generation.delay(generation_id, request_id=get_request_id())
    logger.info("Queued generation generation_id=%s", generation_id)


def get_dispatcher(storage: ObjectStorage = Depends(get_storage)) -> GenerationDispatcher:
    """FastAPI dependency binding the app's storage backend for in-process runs."""
    return partial(dispatch_generation, storage=storage)
