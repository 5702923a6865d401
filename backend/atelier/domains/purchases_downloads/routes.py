"""Clean image download (purchase) endpoint."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...components.purchases.service import finalize_download
from ...platform.database import get_db
from ...platform.request_context import bind_account_id
from ...schemas.generation import DownloadRequest, DownloadResponse
from ...services.storage_service import ObjectStorage, get_storage

router = APIRouter(prefix="/downloads", tags=["Downloads"])


@router.post("/{result_id}", response_model=DownloadResponse)
def download_result(
    result_id: str,
    data: DownloadRequest,
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """Return the clean image URL, purchasing it on the first call."""
    bind_account_id(data.account_id)
    outcome = finalize_download(db, storage, result_id, data.account_id)
    return DownloadResponse(image_url=outcome.image_url, already_purchased=outcome.already_purchased)
