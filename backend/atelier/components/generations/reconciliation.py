"""Sweep for generations abandoned by a crashed worker."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ...models.generation import Generation, GenerationStatus
from ...platform.config import settings
from .lifecycle import fail_generation

logger = logging.getLogger(__name__)


def fail_stale_generations(
    db: Session,
    older_than: Optional[timedelta] = None,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Fail and refund pending/processing generations created before the cutoff.

    Returns how many generations this sweep moved to failed.
    """
    older_than = older_than or timedelta(minutes=settings.GENERATION_STALE_AFTER_MINUTES)
    cutoff = (now or datetime.now(timezone.utc)) - older_than
    stale_ids = (
        db.execute(
            select(Generation.id).where(
                Generation.status.in_(
                    [GenerationStatus.PENDING.value, GenerationStatus.PROCESSING.value]
                ),
                Generation.created_at < cutoff,
            )
        )
        .scalars()
        .all()
    )

    failed = 0
    for generation_id in stale_ids:
        minutes = int(older_than.total_seconds() // 60)
        if fail_generation(db, generation_id, f"Generation timed out after {minutes} minutes"):
            failed += 1
    if stale_ids:
        logger.info("Stale generation sweep found=%d failed=%d", len(stale_ids), failed)
    return failed
