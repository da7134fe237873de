"""
Pipeline Stage Implementations

Each stage is a separate function that can be called independently.
Stages are synchronous Pillow work; PhotoUploader runs them in a worker
thread so the event loop stays free while images are decoded and encoded.

Stages that produce a rendition return a tuple of (encoded_bytes, metadata).
"""

import io
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from photo_ingest.core.exceptions import (
    FileTooLarge,
    ImageEncodingError,
    InvalidFileType,
    MetadataExtractionFailed,
)
from photo_ingest.core.logging import get_logger, with_logging
from photo_ingest.modules.photos.schemas import PhotoFile, PhotoMetadata, WatermarkPosition
from photo_ingest.modules.photos.tiers import AccountTier, get_tier_policy

logger = get_logger(__name__)

# Tier-independent encoding for thumbnails and watermarked renditions
DEFAULT_OUTPUT_FORMAT = "image/webp"
THUMBNAIL_EDGE = 300
THUMBNAIL_QUALITY = 0.80
WATERMARK_QUALITY = 0.90
WATERMARK_PADDING = 20
WATERMARK_FONT = "DejaVuSans.ttf"

# Lowest quality the single size-cap retry may fall to
MIN_RETRY_QUALITY = 0.5

PIL_FORMATS = {
    "image/webp": "WEBP",
    "image/jpeg": "JPEG",
    "image/png": "PNG",
}

EXTENSIONS = {
    "image/webp": "webp",
    "image/jpeg": "jpg",
    "image/png": "png",
}


# =============================================================================
# Stage 0: Validation
# =============================================================================

def validate_photo(file: Any, account_type: AccountTier) -> None:
    """
    Check a file against its tier policy. No side effects.

    Only `content_type` and `size` are read, so any object carrying those
    attributes can be validated.

    Raises:
        InvalidFileType: MIME type is not image/*
        FileTooLarge: size exceeds the tier's byte ceiling
    """
    policy = get_tier_policy(account_type)

    if not (file.content_type or "").startswith("image/"):
        raise InvalidFileType(content_type=file.content_type)

    if file.size > policy.max_size_bytes:
        raise FileTooLarge(
            max_mb=policy.max_size_mb,
            account_type=AccountTier(account_type).value,
            size_bytes=file.size
        )


# =============================================================================
# Stage 1: Metadata
# =============================================================================

def extract_exif_data(file: PhotoFile) -> Dict[str, Any]:
    """Descriptive pass-through fields; no structural EXIF parsing."""
    last_modified = file.last_modified or datetime.now(timezone.utc)
    return {
        "fileName": file.filename,
        "fileType": file.content_type,
        "fileSize": file.size,
        "lastModified": last_modified.isoformat(),
    }


@with_logging("metadata")
def extract_metadata(file: PhotoFile) -> PhotoMetadata:
    """Decode the source to read its natural dimensions."""
    try:
        image = _open_image(file.data)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise MetadataExtractionFailed(details={"reason": str(e)})

    with image:
        width, height = image.size

    return PhotoMetadata(
        width=width,
        height=height,
        size=file.size,
        format=file.content_type,
        exif_data=extract_exif_data(file)
    )


# =============================================================================
# Encoding helpers
# =============================================================================

def _open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def _decode(data: bytes, stage: str) -> Image.Image:
    try:
        return _open_image(data)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageEncodingError(f"Failed to load image for {stage}: {e}", stage=stage)


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


def encode_image(image: Image.Image, output_format: str, quality: float) -> bytes:
    """Encode at a 0..1 quality factor in the given MIME format."""
    pil_format = PIL_FORMATS.get(output_format)
    if pil_format is None:
        raise ValueError(f"Unsupported output format: {output_format}")

    if pil_format == "JPEG":
        image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if _has_alpha(image) else "RGB")

    buffer = io.BytesIO()
    image.save(buffer, format=pil_format, quality=int(round(quality * 100)))
    return buffer.getvalue()


def _scale_to_box(width: int, height: int, box_width: int, box_height: int) -> Tuple[int, int]:
    # floor(side * min(box_w / w, box_h / h)) in exact integer arithmetic
    if box_width * height <= box_height * width:
        return box_width, max(1, height * box_width // width)
    return max(1, width * box_height // height), box_height


def fit_within(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Downscale-only fit preserving aspect ratio."""
    if width <= max_width and height <= max_height:
        return width, height

    return _scale_to_box(width, height, max_width, max_height)


def thumbnail_size(width: int, height: int, edge: int = THUMBNAIL_EDGE) -> Tuple[int, int]:
    """Uniform scale by min(edge / w, edge / h); may enlarge small images."""
    return _scale_to_box(width, height, edge, edge)


def extension_for(output_format: str) -> str:
    return EXTENSIONS.get(output_format, output_format.split("/")[-1])


# =============================================================================
# Stage 2: Preview / compression
# =============================================================================

@with_logging("resize")
def resize_image(
    image_bytes: bytes,
    max_width: int,
    max_height: int,
    quality: float,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
    max_size_bytes: Optional[int] = None
) -> Tuple[bytes, Dict[str, Any]]:
    """
    Fit an image within max_width x max_height and re-encode it.

    When max_size_bytes is given and the first encode exceeds it, the image
    is re-encoded exactly once at quality - 0.1 (floored at 0.5). That second
    result is returned even if it is still over the cap.
    """
    image = _decode(image_bytes, "resize")
    with image:
        width, height = fit_within(image.width, image.height, max_width, max_height)
        if (width, height) != image.size:
            resized = image.resize((width, height), Image.Resampling.LANCZOS)
        else:
            resized = image.copy()

    encoded = encode_image(resized, output_format, quality)
    used_quality = quality
    retried = False

    if max_size_bytes is not None and len(encoded) > max_size_bytes:
        used_quality = round(max(MIN_RETRY_QUALITY, quality - 0.1), 2)
        logger.info(
            "compression_retry",
            first_size=len(encoded),
            max_size_bytes=max_size_bytes,
            quality=used_quality
        )
        encoded = encode_image(resized, output_format, used_quality)
        retried = True

    return encoded, {
        "width": width,
        "height": height,
        "quality": used_quality,
        "retried": retried,
        "size_bytes": len(encoded),
        "content_type": output_format,
    }


# =============================================================================
# Stage 3: Thumbnail
# =============================================================================

@with_logging("thumbnail")
def make_thumbnail(image_bytes: bytes, edge: int = THUMBNAIL_EDGE) -> Tuple[bytes, Dict[str, Any]]:
    """Uniformly scale so both sides fit within edge x edge."""
    image = _decode(image_bytes, "thumbnail")
    with image:
        width, height = thumbnail_size(image.width, image.height, edge)
        thumb = image.resize((width, height), Image.Resampling.LANCZOS)

    encoded = encode_image(thumb, DEFAULT_OUTPUT_FORMAT, THUMBNAIL_QUALITY)
    return encoded, {
        "width": width,
        "height": height,
        "size_bytes": len(encoded),
        "content_type": DEFAULT_OUTPUT_FORMAT,
    }


# =============================================================================
# Stage 4: Watermark
# =============================================================================

def _load_font(size: int) -> ImageFont.FreeTypeFont:
    try:
        return ImageFont.truetype(WATERMARK_FONT, size)
    except OSError:
        return ImageFont.load_default(size=size)


def watermark_origin(
    position: WatermarkPosition,
    width: int,
    height: int,
    text_width: float,
    font_size: int
) -> Tuple[float, float]:
    """Left-baseline origin of the watermark text for an anchor position."""
    padding = WATERMARK_PADDING
    position = WatermarkPosition(position)

    if position == WatermarkPosition.CENTER:
        return (width - text_width) / 2, (height + font_size) / 2
    if position == WatermarkPosition.BOTTOM_LEFT:
        return padding, height - padding
    if position == WatermarkPosition.TOP_RIGHT:
        return width - text_width - padding, font_size + padding
    if position == WatermarkPosition.TOP_LEFT:
        return padding, font_size + padding
    return width - text_width - padding, height - padding


@with_logging("watermark")
def apply_watermark(
    image_bytes: bytes,
    text: str,
    position: WatermarkPosition = WatermarkPosition.BOTTOM_RIGHT
) -> Tuple[bytes, Dict[str, Any]]:
    """
    Burn `text` into the image at one of five anchor positions.

    Font size follows image width (max(20, width / 40)). The text is stroked
    in translucent black, then filled in translucent white, so it stays
    readable on any background.
    """
    image = _decode(image_bytes, "watermark")
    with image:
        keep_alpha = _has_alpha(image)
        base = image.convert("RGBA")

    width, height = base.size
    font_size = max(20, width // 40)
    font = _load_font(font_size)

    overlay = Image.new("RGBA", base.size, (255, 255, 255, 0))
    draw = ImageDraw.Draw(overlay)
    text_width = draw.textlength(text, font=font)
    x, y = watermark_origin(position, width, height, text_width, font_size)

    draw.text(
        (x, y), text, font=font, anchor="ls",
        fill=(0, 0, 0, 0), stroke_width=2, stroke_fill=(0, 0, 0, 128)
    )
    draw.text((x, y), text, font=font, anchor="ls", fill=(255, 255, 255, 128))

    composed = Image.alpha_composite(base, overlay)
    if not keep_alpha:
        composed = composed.convert("RGB")

    encoded = encode_image(composed, DEFAULT_OUTPUT_FORMAT, WATERMARK_QUALITY)
    return encoded, {
        "width": width,
        "height": height,
        "font_size": font_size,
        "position": WatermarkPosition(position).value,
        "origin": (round(x, 2), round(y, 2)),
        "size_bytes": len(encoded),
        "content_type": DEFAULT_OUTPUT_FORMAT,
    }


# =============================================================================
# Helpers
# =============================================================================

def format_file_size(num_bytes: int) -> str:
    """Human-readable size, base 1024: 1536 -> '1.5 KB'."""
    if num_bytes == 0:
        return "0 Bytes"

    sizes = ["Bytes", "KB", "MB", "GB"]
    i = int(math.floor(math.log(num_bytes) / math.log(1024)))
    i = min(max(i, 0), len(sizes) - 1)

    value = f"{num_bytes / 1024 ** i:.2f}".rstrip("0").rstrip(".")
    return f"{value} {sizes[i]}"
