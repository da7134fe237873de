"""
Account tiers and their upload policies.

- General accounts: compressed to <5MB, no separate full-res artifact
- Artist/Venue/Organizer: full-size original plus an optimized preview
- Photographer: full resolution plus optional watermarked previews
"""

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from photo_ingest.core.config import settings

MB = 1024 * 1024


class AccountTier(str, Enum):
    """Classification of the uploading actor. Supplied by the caller."""
    GENERAL = "general"
    ARTIST = "artist"
    VENUE = "venue"
    ORGANIZER = "organizer"
    PHOTOGRAPHER = "photographer"


class Dimensions(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class TierPolicy(BaseModel):
    """Read-only upload policy for one account tier."""
    model_config = ConfigDict(frozen=True)

    max_size_bytes: int = Field(..., gt=0)
    max_dimensions: Dimensions
    quality: float = Field(..., gt=0.0, le=1.0)
    output_format: str = "image/webp"
    enable_full_res: bool
    enable_watermark: bool = False
    # Compressed output is re-encoded once at lower quality when over the cap
    enforce_size_cap: bool = False

    @property
    def max_size_mb(self) -> str:
        """Byte ceiling in MB without decimals, as shown to users."""
        return f"{self.max_size_bytes / MB:.0f}"


UPLOAD_TIERS: Dict[AccountTier, TierPolicy] = {
    AccountTier.GENERAL: TierPolicy(
        max_size_bytes=5 * MB,
        max_dimensions=Dimensions(width=2048, height=2048),
        quality=0.85,
        enable_full_res=False,
        enforce_size_cap=True,
    ),
    AccountTier.ARTIST: TierPolicy(
        max_size_bytes=50 * MB,
        max_dimensions=Dimensions(width=4096, height=4096),
        quality=0.90,
        enable_full_res=True,
    ),
    AccountTier.VENUE: TierPolicy(
        max_size_bytes=50 * MB,
        max_dimensions=Dimensions(width=4096, height=4096),
        quality=0.90,
        enable_full_res=True,
    ),
    AccountTier.ORGANIZER: TierPolicy(
        max_size_bytes=50 * MB,
        max_dimensions=Dimensions(width=4096, height=4096),
        quality=0.90,
        enable_full_res=True,
    ),
    AccountTier.PHOTOGRAPHER: TierPolicy(
        max_size_bytes=100 * MB,
        # Support very high res
        max_dimensions=Dimensions(width=8192, height=8192),
        quality=0.95,
        enable_full_res=True,
        enable_watermark=True,
    ),
}


def get_tier_policy(tier: AccountTier) -> TierPolicy:
    """Policy for a tier. Raises ValueError for unknown tier names."""
    return UPLOAD_TIERS[AccountTier(tier)]


class Rendition(str, Enum):
    """Derived artifact kinds, each stored in its own bucket."""
    FULL_RES = "full_res"
    PREVIEW = "preview"
    THUMBNAIL = "thumbnail"
    WATERMARKED = "watermarked"


# Object name suffix per rendition: {base}_{suffix}.{ext}
RENDITION_SUFFIXES: Dict[Rendition, str] = {
    Rendition.FULL_RES: "full",
    Rendition.PREVIEW: "preview",
    Rendition.THUMBNAIL: "thumb",
    Rendition.WATERMARKED: "watermarked",
}


def storage_buckets() -> Dict[Rendition, str]:
    """Bucket name per rendition kind."""
    return {
        Rendition.FULL_RES: settings.BUCKET_FULL_RES,
        Rendition.PREVIEW: settings.BUCKET_PREVIEW,
        Rendition.THUMBNAIL: settings.BUCKET_THUMBNAIL,
        Rendition.WATERMARKED: settings.BUCKET_WATERMARKED,
    }
