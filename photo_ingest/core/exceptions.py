"""
Exception Taxonomy and Global Handlers

Pipeline steps raise these; PhotoUploader translates them into
UploadResult objects, and the FastAPI handlers below turn anything that
escapes an endpoint into a structured JSON response.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from photo_ingest.core.logging import get_logger, upload_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class PhotoIngestError(Exception):
    """Base exception for the photo ingestion service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        upload_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.upload_id = upload_id or upload_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class InvalidFileType(PhotoIngestError):
    """Raised when the source MIME type is not image/*."""

    def __init__(self, content_type: Optional[str] = None, **kwargs):
        super().__init__("File must be an image", code=400, stage="validation", **kwargs)
        self.details["content_type"] = content_type


class FileTooLarge(PhotoIngestError):
    """Raised when the source exceeds the tier's byte ceiling."""

    def __init__(self, max_mb: str, account_type: str, size_bytes: int, **kwargs):
        super().__init__(
            f"File size must be less than {max_mb}MB for {account_type} accounts",
            code=413,
            stage="validation",
            **kwargs
        )
        self.details["max_mb"] = max_mb
        self.details["size_bytes"] = size_bytes


class MetadataExtractionFailed(PhotoIngestError):
    """Raised when the source image cannot be decoded."""

    def __init__(self, message: str = "Failed to load image metadata", **kwargs):
        super().__init__(message, code=422, stage="metadata", **kwargs)


class RenditionUploadFailed(PhotoIngestError):
    """Raised when a required storage write fails."""

    label = "Upload"
    rendition = "preview"

    def __init__(self, reason: str, label: Optional[str] = None, **kwargs):
        super().__init__(
            f"{label or self.label} failed: {reason}",
            code=502,
            stage=self.rendition,
            **kwargs
        )
        self.details["rendition"] = self.rendition
        self.details["reason"] = reason


class ThumbnailUploadFailed(RenditionUploadFailed):
    label = "Thumbnail upload"
    rendition = "thumbnail"


class FullResUploadFailed(RenditionUploadFailed):
    label = "Full-res upload"
    rendition = "full_res"


class PreviewUploadFailed(RenditionUploadFailed):
    label = "Preview upload"
    rendition = "preview"


class WatermarkFailed(PhotoIngestError):
    """Raised when the watermarked rendition cannot be produced or stored.

    Never fails an upload; it only drops the watermarked URL.
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, stage="watermark", **kwargs)


class ImageEncodingError(PhotoIngestError):
    """Raised when a rendition cannot be decoded or re-encoded."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, code=422, stage=stage, **kwargs)


class StorageError(PhotoIngestError):
    """Raised when storage is misconfigured or unreachable."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(PhotoIngestError)
    async def photo_ingest_exception_handler(request: Request, exc: PhotoIngestError):
        logger.error(
            "photo_ingest_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content={
                "error": exc.message,
                "upload_id": exc.upload_id,
                "code": exc.code,
                "stage": exc.stage,
                "details": exc.details,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "upload_id": upload_id_var.get(),
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
