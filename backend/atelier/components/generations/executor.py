"""Runs a PENDING generation against the image provider.

The clean image is kept on the result row (hidden) and only the preview is
uploaded to the public bucket. Any failure after the debit ends in
``fail_generation``, which refunds exactly once.
"""

from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from ...models.generation import Generation, GenerationResult, GenerationStatus
from ...platform.config import settings
from ...platform.request_context import bind_account_id
from ...services.storage_service import ObjectStorage, extension_for
from ..integrations.image_provider.service import ImageProviderService, ImageRequest
from .lifecycle import fail_generation, mark_completed, mark_processing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Preview:
    data: bytes
    mime_type: str
    watermarked: bool


def watermark_preview(data: bytes, mime_type: str) -> Preview:
    """Produce the public preview for a generated image.

    Compositing a visible mark happens outside this service; previews are
    passed through unchanged and reported as unmarked.
    """
    return Preview(data=data, mime_type=mime_type, watermarked=False)


def build_image_request(generation: Generation) -> ImageRequest:
    input_data: dict[str, Any] = dict(generation.input_data or {})
    prompt = str(input_data.get("prompt") or "").strip()

    improvement = input_data.get("improvementRequest")
    if improvement:
        prompt = f"{prompt}\n\nRequested improvement: {improvement}".strip()
    feedback = (input_data.get("feedbackRegeneration") or {}).get("feedback")
    if feedback:
        prompt = f"{prompt}\n\nThe previous result was rejected: {feedback}".strip()

    references = input_data.get("referenceImages") or []
    options = {
        key: value
        for key, value in input_data.items()
        if key in ("aiTools", "aspectRatio", "style", "pose")
    }
    return ImageRequest(
        tool_id=generation.tool_id,
        prompt=prompt,
        reference_images=[str(ref) for ref in references if ref],
        options=options,
    )


def execute_generation(
    db: Session,
    generation_id: str,
    provider: ImageProviderService,
    storage: ObjectStorage,
) -> str:
    """Drive one generation to a terminal state. Returns the resulting status."""
    generation = db.get(Generation, generation_id)
    if generation is None:
        logger.warning("Generation not found for execution generation_id=%s", generation_id)
        return "missing"
    bind_account_id(generation.user_id)

    if not mark_processing(db, generation_id):
        db.refresh(generation)
        logger.info(
            "Generation not pending, skipping execution generation_id=%s status=%s",
            generation_id,
            generation.status,
        )
        return generation.status

    user_id = generation.user_id
    try:
        image = provider.generate(build_image_request(generation))
    except Exception as exc:
        logger.exception("Image provider failed generation_id=%s", generation_id)
        fail_generation(db, generation_id, f"Image generation failed: {exc}")
        return GenerationStatus.FAILED.value

    try:
        preview = watermark_preview(image.data, image.mime_type)
        result_id = str(uuid.uuid4())
        path = f"{user_id}/{generation_id}/{result_id}.{extension_for(preview.mime_type)}"
        stored = storage.upload(settings.STORAGE_GENERATED_BUCKET, path, preview.data, preview.mime_type)

        db.add(
            GenerationResult(
                id=result_id,
                generation_id=generation_id,
                image_path=stored.path,
                image_url=stored.url,
                mime_type=preview.mime_type,
                has_watermark=preview.watermarked,
                clean_image_data=base64.b64encode(image.data).decode("ascii"),
                clean_mime_type=image.mime_type,
            )
        )
        db.flush()
        completed = mark_completed(
            db,
            generation_id,
            {"result_ids": [result_id], "image_url": stored.url},
        )
        if not completed:
            db.rollback()
            logger.warning(
                "Generation reached a terminal state elsewhere, discarding result generation_id=%s",
                generation_id,
            )
            return generation.status
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Persisting generation result failed generation_id=%s", generation_id)
        fail_generation(db, generation_id, f"Saving the generated image failed: {exc}")
        return GenerationStatus.FAILED.value

    logger.info("Generation completed generation_id=%s result_id=%s", generation_id, result_id)
    return GenerationStatus.COMPLETED.value
