"""Generation status transitions.

Every transition is a compare-and-set on ``status`` so exactly one caller
wins when the worker and the stale sweep race on the same generation.
Failing a generation and refunding its debit commit together.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ...models.generation import Generation, GenerationStatus
from ...services import credit_ledger_service as ledger

logger = logging.getLogger(__name__)

_ERROR_MESSAGE_MAX = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compare_and_set_status(
    db: Session,
    generation_id: str,
    expected: Iterable[GenerationStatus],
    new_status: GenerationStatus,
    **values: Any,
) -> bool:
    """Move to ``new_status`` only if the current status is one of ``expected``. Does not commit."""
    stmt = (
        update(Generation)
        .where(
            Generation.id == generation_id,
            Generation.status.in_([status.value for status in expected]),
        )
        .values(status=new_status.value, **values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def mark_processing(db: Session, generation_id: str) -> bool:
    claimed = compare_and_set_status(
        db,
        generation_id,
        [GenerationStatus.PENDING],
        GenerationStatus.PROCESSING,
        started_at=utcnow(),
    )
    db.commit()
    return claimed


def mark_completed(db: Session, generation_id: str, output_data: dict[str, Any]) -> bool:
    """CAS processing -> completed. The caller commits together with the result rows."""
    return compare_and_set_status(
        db,
        generation_id,
        [GenerationStatus.PROCESSING],
        GenerationStatus.COMPLETED,
        output_data=output_data,
        completed_at=utcnow(),
    )


def fail_generation(db: Session, generation_id: str, error_message: str) -> bool:
    """Move a non-terminal generation to failed and refund its debit in one commit.

    Returns False when the generation had already reached a terminal state,
    in which case nothing is refunded.
    """
    row = db.execute(
        select(Generation.user_id, Generation.debit_transaction_id).where(Generation.id == generation_id)
    ).first()
    if row is None:
        logger.warning("Cannot fail unknown generation generation_id=%s", generation_id)
        return False

    won = compare_and_set_status(
        db,
        generation_id,
        [GenerationStatus.PENDING, GenerationStatus.PROCESSING],
        GenerationStatus.FAILED,
        error_message=(error_message or "")[:_ERROR_MESSAGE_MAX],
        completed_at=utcnow(),
    )
    if not won:
        db.rollback()
        logger.info("Generation already terminal, skipping failure generation_id=%s", generation_id)
        return False

    refund_tx_id = None
    if row.debit_transaction_id is not None:
        entry = ledger.refund(
            db,
            row.user_id,
            row.debit_transaction_id,
            reason=f"generation_failed:{generation_id}",
            commit=False,
        )
        refund_tx_id = entry.transaction_id
    db.commit()
    logger.warning(
        "Generation failed generation_id=%s user_id=%s refund_tx_id=%s error=%s",
        generation_id,
        row.user_id,
        refund_tx_id,
        error_message,
    )
    return True
