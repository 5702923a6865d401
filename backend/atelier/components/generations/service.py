"""Starting generations: price, debit, then create the PENDING row.

The debit and the row are separate commits because execution happens
asynchronously after the row exists. When the row cannot be created the
debit is refunded before the error reaches the caller.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.credit_transaction import CreditTransactionType
from ...models.generation import Generation, GenerationKind, GenerationResult, GenerationStatus
from ...models.generation_feedback import GenerationFeedback
from ...platform.config import settings
from ...platform.errors import (
    ForbiddenError,
    GenerationCompensatedError,
    InvalidRequestError,
    ResourceNotFoundError,
)
from ...services import credit_ledger_service as ledger
from ...services.pricing_service import OperationSpec, resolve_cost
from . import daily_limits

logger = logging.getLogger(__name__)

# Actions a new generation may be priced as. Improvements and downloads have
# their own entry points; chat_conversation produces no image.
GENERATION_ACTIONS = frozenset({"generation", "chat_generation", "chat_refinement"})


@dataclass(frozen=True)
class StartedGeneration:
    generation_id: str
    credits_used: int
    balance: Optional[int] = None
    dislikes_remaining: Optional[int] = None


def _persist_generation(db: Session, generation: Generation) -> None:
    db.add(generation)
    db.commit()


def _create_with_compensation(
    db: Session,
    generation: Generation,
    debit_entry: Optional[ledger.LedgerEntry],
) -> None:
    try:
        _persist_generation(db, generation)
    except SQLAlchemyError as exc:
        db.rollback()
        if debit_entry is None:
            raise
        logger.exception(
            "Generation row creation failed, refunding debit user_id=%s tx_id=%d",
            generation.user_id,
            debit_entry.transaction_id,
        )
        refund = ledger.refund(
            db,
            generation.user_id,
            debit_entry.transaction_id,
            reason="generation_not_created",
        )
        raise GenerationCompensatedError(
            "Could not start the generation. Your credits have been refunded.",
            refund_transaction_id=refund.transaction_id,
        ) from exc


def start_generation(
    db: Session,
    user_id: str,
    tool_id: str,
    input_data: dict[str, Any],
) -> StartedGeneration:
    action = str(input_data.get("action") or "generation")
    if action not in GENERATION_ACTIONS:
        raise InvalidRequestError(f"Unsupported generation action '{action}'.")
    breakdown = resolve_cost(db, user_id, OperationSpec.from_input(input_data, action=action))
    generation_id = str(uuid.uuid4())

    entry = None
    balance = None
    if breakdown.total == 0:
        balance = ledger.get_balance(db, user_id)
    else:
        entry = ledger.debit(
            db,
            user_id,
            breakdown.total,
            CreditTransactionType.GENERATION,
            {"tool_id": tool_id, "generation_id": generation_id, "breakdown": breakdown.as_dict()},
            description=f"Image generation ({tool_id})",
        )

    generation = Generation(
        id=generation_id,
        user_id=user_id,
        tool_id=tool_id,
        kind=GenerationKind.STANDARD.value,
        status=GenerationStatus.PENDING.value,
        input_data=input_data,
        credits_used=breakdown.total,
        debit_transaction_id=entry.transaction_id if entry else None,
    )
    _create_with_compensation(db, generation, entry)
    logger.info(
        "Generation started generation_id=%s user_id=%s tool_id=%s credits=%d",
        generation_id,
        user_id,
        tool_id,
        breakdown.total,
    )
    return StartedGeneration(
        generation_id=generation_id,
        credits_used=breakdown.total,
        balance=entry.balance if entry else balance,
    )


def _load_owned_result(db: Session, user_id: str, result_id: str) -> tuple[GenerationResult, Generation]:
    result = db.get(GenerationResult, result_id)
    if result is None:
        raise ResourceNotFoundError("Generation result not found.")
    parent = result.generation
    if parent is None:
        raise ResourceNotFoundError("Generation result not found.")
    if parent.user_id != user_id:
        raise ForbiddenError("This result belongs to another account.")
    if not parent.input_data:
        raise InvalidRequestError("The original generation data is no longer available to regenerate.")
    return result, parent


def start_improvement(
    db: Session,
    user_id: str,
    result_id: str,
    improvement_text: str,
) -> StartedGeneration:
    """Paid regeneration of an existing result with free-form improvement text."""
    text = (improvement_text or "").strip()
    if not text:
        raise InvalidRequestError("Improvement text cannot be empty.")
    _, parent = _load_owned_result(db, user_id, result_id)

    cost = resolve_cost(db, user_id, OperationSpec(action="improvement")).total
    generation_id = str(uuid.uuid4())

    entry = None
    if cost > 0:
        entry = ledger.debit(
            db,
            user_id,
            cost,
            CreditTransactionType.IMPROVEMENT,
            {
                "original_result_id": result_id,
                "improvement_text": text,
                "generation_id": generation_id,
            },
            description="Image improvement",
        )

    generation = Generation(
        id=generation_id,
        user_id=user_id,
        tool_id=parent.tool_id,
        kind=GenerationKind.IMPROVEMENT.value,
        status=GenerationStatus.PENDING.value,
        input_data={
            **parent.input_data,
            "improvementRequest": text,
            "improvementContext": {"originalResultId": result_id},
            "isImprovementRegeneration": True,
        },
        output_data={"improvement_text": text, "original_result_id": result_id},
        credits_used=cost,
        debit_transaction_id=entry.transaction_id if entry else None,
        parent_result_id=result_id,
    )
    _create_with_compensation(db, generation, entry)
    logger.info(
        "Improvement started generation_id=%s user_id=%s result_id=%s credits=%d",
        generation_id,
        user_id,
        result_id,
        cost,
    )
    return StartedGeneration(
        generation_id=generation_id,
        credits_used=cost,
        balance=entry.balance if entry else None,
    )


def _record_dislike(db: Session, user_id: str, result_id: str, feedback_text: str) -> None:
    feedback = (
        db.query(GenerationFeedback)
        .filter(
            GenerationFeedback.user_id == user_id,
            GenerationFeedback.generation_result_id == result_id,
        )
        .first()
    )
    if feedback is None:
        db.add(
            GenerationFeedback(
                user_id=user_id,
                generation_result_id=result_id,
                feedback_type="dislike",
                feedback_text=feedback_text,
            )
        )
    else:
        feedback.feedback_type = "dislike"
        feedback.feedback_text = feedback_text


def start_feedback_regeneration(
    db: Session,
    user_id: str,
    result_id: str,
    feedback_text: str,
) -> StartedGeneration:
    """Free regeneration driven by dislike feedback, capped per day."""
    text = (feedback_text or "").strip()
    if not text:
        raise InvalidRequestError("Feedback cannot be empty.")
    _, parent = _load_owned_result(db, user_id, result_id)
    tool_id = parent.tool_id
    parent_input = dict(parent.input_data)

    limit = settings.DAILY_DISLIKE_LIMIT
    day = daily_limits.utc_today()
    used = daily_limits.consume_slot(db, user_id, limit, day=day)

    generation_id = str(uuid.uuid4())
    try:
        _record_dislike(db, user_id, result_id, text)
        _persist_generation(
            db,
            Generation(
                id=generation_id,
                user_id=user_id,
                tool_id=tool_id,
                kind=GenerationKind.FEEDBACK.value,
                status=GenerationStatus.PENDING.value,
                input_data={
                    **parent_input,
                    "feedbackRegeneration": {"feedback": text, "originalResultId": result_id},
                    "isFeedbackRegeneration": True,
                },
                output_data={"feedback_text": text, "original_result_id": result_id},
                credits_used=0,
                parent_result_id=result_id,
            ),
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Feedback regeneration failed, releasing daily slot user_id=%s", user_id)
        daily_limits.release_slot(db, user_id, day=day)
        raise

    logger.info(
        "Feedback regeneration started generation_id=%s user_id=%s result_id=%s used=%d/%d",
        generation_id,
        user_id,
        result_id,
        used,
        limit,
    )
    return StartedGeneration(
        generation_id=generation_id,
        credits_used=0,
        dislikes_remaining=max(limit - used, 0),
    )


def get_generation(db: Session, user_id: str, generation_id: str) -> Generation:
    generation = db.get(Generation, generation_id)
    if generation is None:
        raise ResourceNotFoundError("Generation not found.")
    if generation.user_id != user_id:
        raise ForbiddenError("This generation belongs to another account.")
    return generation
