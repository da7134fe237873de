"""
FastAPI Dependencies

Provides dependency injection for:
- Storage backend (process-wide singleton from StorageFactory)
- PhotoUploader (per-request, cheap to build)
"""

from fastapi import Depends

from photo_ingest.core.storage import IStorage, get_storage
from photo_ingest.pipeline.uploader import PhotoUploader


def get_uploader(storage: IStorage = Depends(get_storage)) -> PhotoUploader:
    """Build an uploader bound to the configured storage backend."""
    return PhotoUploader(storage)
