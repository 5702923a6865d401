from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from .base import CamelModel


class CreateGenerationRequest(CamelModel):
    account_id: str = Field(min_length=1)
    tool_id: str = Field(min_length=1, max_length=100)
    input: dict[str, Any] = Field(default_factory=dict)


class GenerationCreatedResponse(CamelModel):
    generation_id: str
    credits_used: int
    credits_remaining: Optional[int] = None
    status: str = "pending"


class ImproveRequest(CamelModel):
    account_id: str = Field(min_length=1)
    improvement_text: str = Field(min_length=1, max_length=2000)


class FeedbackRegenerateRequest(CamelModel):
    account_id: str = Field(min_length=1)
    feedback_text: Optional[str] = Field(default=None, max_length=2000)


class FeedbackRegenerateResponse(CamelModel):
    generation_id: str
    credits_used: int = 0
    dislikes_remaining: int
    status: str = "pending"


class GenerationResultView(CamelModel):
    id: str
    image_url: str
    mime_type: str
    has_watermark: bool
    is_purchased: bool


class GenerationView(CamelModel):
    id: str
    tool_id: str
    kind: str
    status: str
    credits_used: int
    parent_result_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    results: list[GenerationResultView] = Field(default_factory=list)


class DownloadRequest(CamelModel):
    account_id: str = Field(min_length=1)


class DownloadResponse(CamelModel):
    image_url: str
    already_purchased: bool
