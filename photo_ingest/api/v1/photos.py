"""
Photo Endpoints - Tiered Ingestion

POST   /api/v1/photos         - Upload one photo through the tiered pipeline
POST   /api/v1/photos/batch   - Upload several photos sequentially
DELETE /api/v1/photos         - Best-effort deletion of a photo's renditions
GET    /api/v1/photos/tiers   - The fixed tier policy table
"""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from photo_ingest.api.dependencies import get_uploader
from photo_ingest.core.config import settings
from photo_ingest.core.logging import get_logger
from photo_ingest.modules.photos.schemas import (
    PhotoFile,
    PhotoUploadOptions,
    PhotoUrls,
    UploadResult,
    WatermarkPosition,
)
from photo_ingest.modules.photos.tiers import UPLOAD_TIERS, AccountTier, TierPolicy
from photo_ingest.pipeline.stages import validate_photo
from photo_ingest.pipeline.uploader import PhotoUploader

logger = get_logger(__name__)
router = APIRouter()


async def _to_photo_file(upload: UploadFile, last_modified: Optional[datetime] = None) -> PhotoFile:
    data = await upload.read()
    return PhotoFile(
        filename=upload.filename or "upload",
        content_type=upload.content_type or "application/octet-stream",
        data=data,
        last_modified=last_modified
    )


def _photo_loader(account_type: AccountTier, last_modified: Optional[datetime] = None):
    async def load(upload: UploadFile) -> PhotoFile:
        # Reject on declared type and spooled size before reading into memory
        if upload.size is not None:
            validate_photo(upload, account_type)
        return await _to_photo_file(upload, last_modified)

    return load


@router.post("", response_model=UploadResult)
async def upload_photo(
    file: UploadFile = File(...),
    account_type: AccountTier = Form(...),
    user_id: str = Form(...),
    album_id: Optional[str] = Form(None),
    add_watermark: bool = Form(False),
    watermark_text: Optional[str] = Form(None),
    watermark_position: WatermarkPosition = Form(WatermarkPosition.BOTTOM_RIGHT),
    last_modified: Optional[datetime] = Form(None),
    uploader: PhotoUploader = Depends(get_uploader)
):
    """
    Upload a photo and derive its tier-appropriate renditions.

    Returns the UploadResult. Failures keep the same body shape, with the
    HTTP status taken from the failure kind.
    """
    options = PhotoUploadOptions(
        account_type=account_type,
        user_id=user_id,
        album_id=album_id,
        add_watermark=add_watermark,
        watermark_text=watermark_text,
        watermark_position=watermark_position
    )
    result = await uploader.upload_from(file, options, _photo_loader(account_type, last_modified))

    return JSONResponse(
        status_code=200 if result.success else (result.error_code or 500),
        content=result.model_dump(mode="json")
    )


@router.post("/batch", response_model=List[UploadResult])
async def upload_photo_batch(
    files: List[UploadFile] = File(...),
    account_type: AccountTier = Form(...),
    user_id: str = Form(...),
    album_id: Optional[str] = Form(None),
    add_watermark: bool = Form(False),
    watermark_text: Optional[str] = Form(None),
    watermark_position: WatermarkPosition = Form(WatermarkPosition.BOTTOM_RIGHT),
    uploader: PhotoUploader = Depends(get_uploader)
):
    """Upload files one by one; each file gets its own result."""
    if len(files) > settings.MAX_BATCH_FILES:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.MAX_BATCH_FILES} files per batch"
        )

    options = PhotoUploadOptions(
        account_type=account_type,
        user_id=user_id,
        album_id=album_id,
        add_watermark=add_watermark,
        watermark_text=watermark_text,
        watermark_position=watermark_position
    )

    def log_progress(completed: int, total: int):
        logger.info("batch_progress", completed=completed, total=total)

    return await uploader.upload_batch(
        files,
        options,
        on_progress=log_progress,
        load=_photo_loader(account_type)
    )


@router.delete("")
async def delete_photo(
    urls: PhotoUrls,
    uploader: PhotoUploader = Depends(get_uploader)
):
    """Delete whichever renditions are listed."""
    deleted = await uploader.delete_photo(urls)
    return {"deleted": deleted}


@router.get("/tiers", response_model=Dict[AccountTier, TierPolicy])
async def list_tiers():
    """The compiled-in tier policy table."""
    return UPLOAD_TIERS
