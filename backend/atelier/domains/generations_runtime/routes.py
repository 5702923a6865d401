"""Generation start, status, improvement and feedback regeneration."""
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ...components.generations import service as generations
from ...components.generations.dispatch import GenerationDispatcher, get_dispatcher
from ...platform.database import get_db
from ...platform.request_context import bind_account_id
from ...schemas.generation import (
    CreateGenerationRequest,
    FeedbackRegenerateRequest,
    FeedbackRegenerateResponse,
    GenerationCreatedResponse,
    GenerationView,
    ImproveRequest,
)

router = APIRouter(prefix="/generations", tags=["Generations"])


@router.post("", response_model=GenerationCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_generation(
    data: CreateGenerationRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatch: GenerationDispatcher = Depends(get_dispatcher),
):
    """Price and debit the request, then queue the generation."""
    bind_account_id(data.account_id)
    started = generations.start_generation(db, data.account_id, data.tool_id, data.input)
    dispatch(started.generation_id, background_tasks)
    return GenerationCreatedResponse(
        generation_id=started.generation_id,
        credits_used=started.credits_used,
        credits_remaining=started.balance,
    )


@router.get("/{generation_id}", response_model=GenerationView)
def get_generation(
    generation_id: str,
    account_id: str = Query(..., alias="accountId"),
    db: Session = Depends(get_db),
):
    generation = generations.get_generation(db, account_id, generation_id)
    return GenerationView.model_validate(generation)


@router.post("/{result_id}/improve", response_model=GenerationCreatedResponse, status_code=status.HTTP_201_CREATED)
def improve_generation(
    result_id: str,
    data: ImproveRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatch: GenerationDispatcher = Depends(get_dispatcher),
):
    """Paid regeneration of a result with improvement text."""
    bind_account_id(data.account_id)
    started = generations.start_improvement(db, data.account_id, result_id, data.improvement_text)
    dispatch(started.generation_id, background_tasks)
    return GenerationCreatedResponse(
        generation_id=started.generation_id,
        credits_used=started.credits_used,
        credits_remaining=started.balance,
    )


@router.post(
    "/{result_id}/feedback-regenerate",
    response_model=FeedbackRegenerateResponse,
    status_code=status.HTTP_201_CREATED,
)
def feedback_regenerate(
    result_id: str,
    data: FeedbackRegenerateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatch: GenerationDispatcher = Depends(get_dispatcher),
):
    """Free regeneration from dislike feedback, limited per day."""
    bind_account_id(data.account_id)
    started = generations.start_feedback_regeneration(db, data.account_id, result_id, data.feedback_text)
    dispatch(started.generation_id, background_tasks)
    return FeedbackRegenerateResponse(
        generation_id=started.generation_id,
        credits_used=0,
        dislikes_remaining=started.dislikes_remaining,
    )
