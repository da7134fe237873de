import io
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

# Keep test runs away from the working tree before settings are loaded
os.environ.setdefault(
    "LOCAL_STORAGE_PATH",
    str(Path(tempfile.gettempdir()) / "photo_ingest_test_storage")
)
os.environ.setdefault("LOG_FORMAT_JSON", "false")

import pytest
from PIL import Image

from photo_ingest.core.storage import IStorage, StorageWriteResult
from photo_ingest.modules.photos.schemas import PhotoFile, PhotoUploadOptions
from photo_ingest.modules.photos.tiers import Rendition, storage_buckets


class FakeStorage(IStorage):
    """In-memory storage that records every call."""

    def __init__(
        self,
        fail_buckets: Optional[Set[str]] = None,
        reject_removals: bool = False,
        raise_on_remove: bool = False
    ):
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.put_calls: List[Tuple[str, str, str]] = []
        self.remove_calls: List[Tuple[str, List[str]]] = []
        self.fail_buckets = fail_buckets or set()
        self.reject_removals = reject_removals
        self.raise_on_remove = raise_on_remove

    async def put(self, bucket, path, data, content_type="image/webp"):
        self.put_calls.append((bucket, path, content_type))
        if bucket in self.fail_buckets:
            return StorageWriteResult(ok=False, error="bucket unavailable")
        if (bucket, path) in self.objects:
            return StorageWriteResult(ok=False, error="The resource already exists")
        self.objects[(bucket, path)] = data
        return StorageWriteResult(ok=True)

    def get_public_url(self, bucket, path):
        return f"https://cdn.example.test/storage/v1/object/public/{bucket}/{path}"

    async def remove(self, bucket, paths):
        self.remove_calls.append((bucket, list(paths)))
        if self.raise_on_remove:
            raise ConnectionError("storage unreachable")
        if self.reject_removals:
            return StorageWriteResult(ok=False, error="permission denied")
        for path in paths:
            self.objects.pop((bucket, path), None)
        return StorageWriteResult(ok=True)

    def put_buckets(self) -> List[str]:
        return [bucket for bucket, _, _ in self.put_calls]


def make_image_bytes(
    width: int = 640,
    height: int = 480,
    fmt: str = "JPEG",
    color=(120, 90, 200)
) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_photo(
    width: int = 640,
    height: int = 480,
    filename: str = "photo.jpg",
    content_type: str = "image/jpeg"
) -> PhotoFile:
    return PhotoFile(
        filename=filename,
        content_type=content_type,
        data=make_image_bytes(width, height)
    )


@pytest.fixture
def buckets() -> Dict[Rendition, str]:
    return storage_buckets()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def photo() -> PhotoFile:
    return make_photo()


@pytest.fixture
def photographer_options() -> PhotoUploadOptions:
    return PhotoUploadOptions(
        account_type="photographer",
        user_id="u1",
        add_watermark=True,
        watermark_text="© Studio"
    )
