"""
Photos Module - Tiered Ingestion

Contains the account tier policy table and the photo upload schemas.
"""

from photo_ingest.modules.photos.tiers import AccountTier, TierPolicy, UPLOAD_TIERS, Rendition
from photo_ingest.modules.photos.schemas import (
    PhotoFile,
    PhotoMetadata,
    PhotoUploadOptions,
    PhotoUrls,
    UploadResult,
    WatermarkPosition,
)

__all__ = [
    "AccountTier",
    "TierPolicy",
    "UPLOAD_TIERS",
    "Rendition",
    "PhotoFile",
    "PhotoMetadata",
    "PhotoUploadOptions",
    "PhotoUrls",
    "UploadResult",
    "WatermarkPosition",
]
