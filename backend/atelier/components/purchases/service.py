"""Converts a watermarked result into a purchased clean download, once.

The ``is_purchased`` flag is flipped with a conditional update, so two
concurrent downloads upload at most to the same deterministic path and only
one of them records the purchase. Repeat calls return the stored URL without
touching storage.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.credit_transaction import CreditTransactionType
from ...models.generation import GenerationResult
from ...models.user_download import UserDownload
from ...platform.config import settings
from ...platform.errors import (
    ForbiddenError,
    GenerationCompensatedError,
    MissingCleanAssetError,
    ResourceNotFoundError,
)
from ...services import credit_ledger_service as ledger
from ...services.pricing_service import action_cost
from ...services.storage_service import ObjectStorage, extension_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadOutcome:
    image_url: str
    already_purchased: bool


def purchase_path(user_id: str, result_id: str, mime_type: str | None) -> str:
    return f"{user_id}/downloads/{result_id}.{extension_for(mime_type)}"


def _epoch(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def purchased_url(storage: ObjectStorage, bucket: str, path: str, purchased_at: datetime) -> str:
    """Public URL of the purchased object with a cache-buster that never changes."""
    return f"{storage.public_url(bucket, path)}?v={_epoch(purchased_at)}"


def _stored_outcome(storage: ObjectStorage, result: GenerationResult) -> DownloadOutcome:
    return DownloadOutcome(
        image_url=purchased_url(storage, result.purchase_bucket, result.purchase_path, result.purchased_at),
        already_purchased=True,
    )


def _flip_purchased(db: Session, result_id: str, bucket: str, path: str, purchased_at: datetime) -> bool:
    return db.execute(
        update(GenerationResult)
        .where(GenerationResult.id == result_id, GenerationResult.is_purchased.is_(False))
        .values(
            is_purchased=True,
            purchase_bucket=bucket,
            purchase_path=path,
            purchased_at=purchased_at,
            clean_image_data=None,
        )
        .execution_options(synchronize_session=False)
    ).rowcount == 1


def finalize_download(
    db: Session,
    storage: ObjectStorage,
    result_id: str,
    user_id: str,
) -> DownloadOutcome:
    result = db.get(GenerationResult, result_id)
    if result is None or result.generation is None:
        raise ResourceNotFoundError("Generation result not found.")
    if result.generation.user_id != user_id:
        raise ForbiddenError("You do not have permission to download this image.")
    if result.is_purchased:
        return _stored_outcome(storage, result)
    if not result.clean_image_data:
        raise MissingCleanAssetError(result_id)

    try:
        data = base64.b64decode(result.clean_image_data, validate=True)
    except (binascii.Error, ValueError):
        logger.error("Stored clean image is corrupt result_id=%s", result_id)
        raise MissingCleanAssetError(result_id)

    generation_id = result.generation_id
    mime_type = result.clean_mime_type or result.mime_type or "image/png"
    bucket = settings.STORAGE_PURCHASED_BUCKET
    path = purchase_path(user_id, result_id, mime_type)

    price = action_cost(db, "watermark_removal")
    entry = None
    if price > 0:
        entry = ledger.debit(
            db,
            user_id,
            price,
            CreditTransactionType.DOWNLOAD,
            {"result_id": result_id, "generation_id": generation_id},
            description="Clean image download",
        )

    try:
        storage.upload(bucket, path, data, mime_type)
    except Exception:
        logger.exception("Upload of purchased image failed result_id=%s", result_id)
        if entry is not None:
            ledger.refund(db, user_id, entry.transaction_id, reason="download_upload_failed")
        raise

    purchased_at = datetime.now(timezone.utc)
    try:
        flipped = _flip_purchased(db, result_id, bucket, path, purchased_at)
        if flipped:
            db.add(
                UserDownload(
                    user_id=user_id,
                    generation_id=generation_id,
                    generation_result_id=result_id,
                    image_path=path,
                    credits_charged=price,
                )
            )
            db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        if entry is None:
            raise
        logger.exception(
            "Recording download failed, refunding debit result_id=%s tx_id=%d",
            result_id,
            entry.transaction_id,
        )
        refund = ledger.refund(db, user_id, entry.transaction_id, reason="download_not_recorded")
        raise GenerationCompensatedError(
            "Could not complete the download. Your credits have been refunded.",
            refund_transaction_id=refund.transaction_id,
        ) from exc

    if not flipped:
        db.rollback()
        logger.info("Concurrent download already purchased result_id=%s", result_id)
        if entry is not None:
            ledger.refund(db, user_id, entry.transaction_id, reason="download_already_purchased")
        db.refresh(result)
        return _stored_outcome(storage, result)

    logger.info(
        "Download purchased result_id=%s user_id=%s credits=%d path=%s",
        result_id,
        user_id,
        price,
        path,
    )
    return DownloadOutcome(
        image_url=purchased_url(storage, bucket, path, purchased_at),
        already_purchased=False,
    )
