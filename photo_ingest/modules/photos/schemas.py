import re
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from photo_ingest.modules.photos.tiers import AccountTier

_EXTENSION_RE = re.compile(r"[A-Za-z0-9]+")


class WatermarkPosition(str, Enum):
    CENTER = "center"
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"


class PhotoFile(BaseModel):
    """A source image as handed over by the caller."""
    filename: str
    content_type: str = Field(..., description="Declared MIME type")
    data: bytes = Field(..., repr=False)
    last_modified: Optional[datetime] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        """
        Extension of the original filename, without the dot.

        Falls back to the MIME subtype when the filename has no plain
        alphanumeric extension, so a client-supplied name never adds path
        segments to an object key.
        """
        suffix = PurePosixPath(self.filename).suffix[1:]
        if _EXTENSION_RE.fullmatch(suffix):
            return suffix
        subtype = self.content_type.split("/")[-1].split("+")[0]
        return subtype if _EXTENSION_RE.fullmatch(subtype) else "bin"


class PhotoMetadata(BaseModel):
    """Metadata derived from the source file at validation time."""
    width: int
    height: int
    size: int
    format: str
    exif_data: Dict[str, Any] = Field(default_factory=dict)


class PhotoUploadOptions(BaseModel):
    """Per-call upload options; the file itself travels separately."""
    account_type: AccountTier
    user_id: str = Field(..., min_length=1)
    album_id: Optional[str] = None
    add_watermark: bool = False
    watermark_text: Optional[str] = None
    watermark_position: WatermarkPosition = WatermarkPosition.BOTTOM_RIGHT


class UploadResult(BaseModel):
    """Outcome of one upload. Callers branch on `success`."""
    success: bool
    full_res_url: Optional[str] = None
    preview_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    watermarked_url: Optional[str] = None
    metadata: Optional[PhotoMetadata] = None
    error: Optional[str] = None
    # HTTP-style status of the failure kind (400, 413, 422, 502, 500)
    error_code: Optional[int] = None


class PhotoUrls(BaseModel):
    """Public URLs of the renditions belonging to one photo."""
    full_res_url: Optional[str] = None
    preview_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    watermarked_url: Optional[str] = None
