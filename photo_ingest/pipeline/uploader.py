"""
Photo Upload Orchestration

Runs the tiered pipeline for one source image:

1. Validation against the account tier
2. Metadata extraction (decode)
3. Thumbnail -> thumbnail bucket (gate: nothing else runs if this fails)
4. Full-res tiers: original -> full-res bucket, preview -> preview bucket,
   optional watermarked preview -> watermarked bucket (non-fatal)
   General tier: compressed preview -> preview bucket, reused as full-res
5. UploadResult with the public URLs and metadata

Every failure is returned as UploadResult(success=False); nothing is
retried. Renditions written before an abort stay in storage unless
rollback is enabled.
"""

import asyncio
import inspect
import secrets
import string
import time
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union

from photo_ingest.core.config import settings
from photo_ingest.core.exceptions import (
    FullResUploadFailed,
    PhotoIngestError,
    PreviewUploadFailed,
    ThumbnailUploadFailed,
    WatermarkFailed,
)
from photo_ingest.core.logging import LogContext, get_logger
from photo_ingest.core.metrics import (
    record_deletion,
    record_rendition_write,
    record_upload,
    track_stage_latency,
)
from photo_ingest.core.storage import IStorage, StorageWriteResult
from photo_ingest.modules.photos.schemas import (
    PhotoFile,
    PhotoUploadOptions,
    PhotoUrls,
    UploadResult,
)
from photo_ingest.modules.photos.tiers import (
    RENDITION_SUFFIXES,
    Rendition,
    get_tier_policy,
    storage_buckets,
)
from photo_ingest.pipeline.stages import (
    DEFAULT_OUTPUT_FORMAT,
    THUMBNAIL_EDGE,
    apply_watermark,
    extension_for,
    extract_metadata,
    make_thumbnail,
    resize_image,
    validate_photo,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]

# Turns a caller-side source (e.g. a spooled HTTP upload) into a PhotoFile.
# May raise PhotoIngestError to reject the source before reading it.
PhotoLoader = Callable[[Any], Awaitable[PhotoFile]]

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


class PhotoUploader:
    """Tiered photo ingestion over a bucket-scoped storage backend."""

    def __init__(
        self,
        storage: IStorage,
        buckets: Optional[Dict[Rendition, str]] = None,
        rollback_on_failure: Optional[bool] = None,
        clock: Callable[[], float] = time.time
    ):
        self.storage = storage
        self.buckets = buckets or storage_buckets()
        self.rollback_on_failure = (
            settings.ROLLBACK_PARTIAL_UPLOADS if rollback_on_failure is None else rollback_on_failure
        )
        self._clock = clock

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def make_base_path(self, user_id: str, album_id: Optional[str] = None) -> str:
        """{user}/{album or 'standalone'}/{timestamp_ms}_{random}"""
        timestamp = int(self._clock() * 1000)
        token = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(6))
        return f"{user_id}/{album_id or 'standalone'}/{timestamp}_{token}"

    @staticmethod
    def object_name(base_path: str, rendition: Rendition, extension: str) -> str:
        return f"{base_path}_{RENDITION_SUFFIXES[rendition]}.{extension}"

    # -------------------------------------------------------------------------
    # Single upload
    # -------------------------------------------------------------------------

    async def upload(self, file: PhotoFile, options: PhotoUploadOptions) -> UploadResult:
        """Run the full pipeline for one file. Never raises."""
        upload_id = str(uuid.uuid4())
        account_type = options.account_type.value
        written: List[Tuple[str, str]] = []

        with LogContext(upload_id=upload_id):
            logger.info(
                "upload_started",
                account_type=account_type,
                user_id=options.user_id,
                album_id=options.album_id,
                filename=file.filename,
                size_bytes=file.size
            )
            start = time.time()

            try:
                result = await self._run_pipeline(file, options, written)
            except PhotoIngestError as e:
                logger.warning(
                    "upload_failed",
                    error=e.message,
                    failed_stage=e.stage,
                    renditions_written=len(written)
                )
                await self._rollback(written)
                record_upload(account_type, "failed")
                return UploadResult(success=False, error=e.message, error_code=e.code)
            except Exception as e:
                logger.error(
                    "upload_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    renditions_written=len(written),
                    exc_info=True
                )
                await self._rollback(written)
                record_upload(account_type, "failed")
                return UploadResult(success=False, error=str(e) or "Upload failed", error_code=500)

            duration_ms = int((time.time() - start) * 1000)
            logger.info(
                "upload_completed",
                duration_ms=duration_ms,
                watermarked=result.watermarked_url is not None
            )
            record_upload(account_type, "success")
            return result

    async def upload_from(
        self,
        source: Any,
        options: PhotoUploadOptions,
        load: PhotoLoader
    ) -> UploadResult:
        """Materialise `source` with `load`, then upload it. Never raises."""
        try:
            file = await load(source)
        except PhotoIngestError as e:
            logger.warning("upload_rejected", error=e.message, failed_stage=e.stage)
            record_upload(options.account_type.value, "failed")
            return UploadResult(success=False, error=e.message, error_code=e.code)

        return await self.upload(file, options)

    async def _run_pipeline(
        self,
        file: PhotoFile,
        options: PhotoUploadOptions,
        written: List[Tuple[str, str]]
    ) -> UploadResult:
        policy = get_tier_policy(options.account_type)

        with track_stage_latency("validation"):
            validate_photo(file, options.account_type)

        metadata = await self._render("metadata", extract_metadata, file)
        base_path = self.make_base_path(options.user_id, options.album_id)

        # Thumbnail gates everything else
        thumb_bytes, _ = await self._render("thumbnail", make_thumbnail, file.data, THUMBNAIL_EDGE)
        thumbnail_url = await self._store(
            Rendition.THUMBNAIL,
            self.object_name(base_path, Rendition.THUMBNAIL, extension_for(DEFAULT_OUTPUT_FORMAT)),
            thumb_bytes,
            DEFAULT_OUTPUT_FORMAT,
            written,
            ThumbnailUploadFailed
        )

        watermarked_url: Optional[str] = None
        preview_name = self.object_name(
            base_path, Rendition.PREVIEW, extension_for(policy.output_format)
        )

        if policy.enable_full_res:
            full_res_url = await self._store(
                Rendition.FULL_RES,
                self.object_name(base_path, Rendition.FULL_RES, file.extension),
                file.data,
                file.content_type,
                written,
                FullResUploadFailed
            )

            preview_bytes, _ = await self._render(
                "preview",
                resize_image,
                file.data,
                policy.max_dimensions.width,
                policy.max_dimensions.height,
                policy.quality,
                policy.output_format
            )
            preview_url = await self._store(
                Rendition.PREVIEW,
                preview_name,
                preview_bytes,
                policy.output_format,
                written,
                PreviewUploadFailed
            )

            if policy.enable_watermark and options.add_watermark and options.watermark_text:
                watermarked_url = await self._watermark(preview_bytes, options, base_path, written)
        else:
            preview_bytes, _ = await self._render(
                "preview",
                resize_image,
                file.data,
                policy.max_dimensions.width,
                policy.max_dimensions.height,
                policy.quality,
                policy.output_format,
                policy.max_size_bytes if policy.enforce_size_cap else None
            )
            preview_url = await self._store(
                Rendition.PREVIEW,
                preview_name,
                preview_bytes,
                policy.output_format,
                written,
                PreviewUploadFailed,
                label="Upload"
            )
            # The compressed preview doubles as the full-res artifact
            full_res_url = preview_url

        return UploadResult(
            success=True,
            full_res_url=full_res_url,
            preview_url=preview_url,
            thumbnail_url=thumbnail_url,
            watermarked_url=watermarked_url,
            metadata=metadata
        )

    async def _render(self, stage: str, func: Callable[..., Any], *args: Any) -> Any:
        with track_stage_latency(stage):
            return await asyncio.to_thread(func, *args)

    async def _store(
        self,
        rendition: Rendition,
        path: str,
        data: bytes,
        content_type: str,
        written: List[Tuple[str, str]],
        error_cls: Type[PhotoIngestError],
        **error_kwargs: Any
    ) -> str:
        bucket = self.buckets[rendition]

        with track_stage_latency(f"store_{rendition.value}"):
            try:
                result = await self.storage.put(bucket, path, data, content_type)
            except Exception as e:
                result = StorageWriteResult(ok=False, error=str(e) or type(e).__name__)

        record_rendition_write(rendition.value, result.ok, len(data))
        if not result.ok:
            raise error_cls(result.error or "Upload failed", **error_kwargs)

        written.append((bucket, path))
        logger.info(
            "rendition_stored",
            rendition=rendition.value,
            bucket=bucket,
            path=path,
            size_bytes=len(data)
        )
        return self.storage.get_public_url(bucket, path)

    async def _watermark(
        self,
        preview_bytes: bytes,
        options: PhotoUploadOptions,
        base_path: str,
        written: List[Tuple[str, str]]
    ) -> Optional[str]:
        try:
            watermarked, _ = await self._render(
                "watermark",
                apply_watermark,
                preview_bytes,
                options.watermark_text,
                options.watermark_position
            )
            return await self._store(
                Rendition.WATERMARKED,
                self.object_name(
                    base_path, Rendition.WATERMARKED, extension_for(DEFAULT_OUTPUT_FORMAT)
                ),
                watermarked,
                DEFAULT_OUTPUT_FORMAT,
                written,
                WatermarkFailed
            )
        except Exception as e:
            # Non-fatal: the upload succeeds without a watermarked URL
            logger.warning("watermark_failed", error=str(e), error_type=type(e).__name__)
            return None

    async def _rollback(self, written: List[Tuple[str, str]]):
        if not self.rollback_on_failure or not written:
            return

        by_bucket: Dict[str, List[str]] = defaultdict(list)
        for bucket, path in written:
            by_bucket[bucket].append(path)

        results = await asyncio.gather(
            *(self.storage.remove(bucket, paths) for bucket, paths in by_bucket.items()),
            return_exceptions=True
        )
        for bucket, outcome in zip(by_bucket, results):
            if isinstance(outcome, BaseException) or not outcome.ok:
                logger.error(
                    "rollback_failed",
                    bucket=bucket,
                    paths=by_bucket[bucket],
                    error=str(outcome) if isinstance(outcome, BaseException) else outcome.error
                )
            else:
                logger.info("rollback_completed", bucket=bucket, removed=len(by_bucket[bucket]))

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    async def upload_batch(
        self,
        files: Sequence[Any],
        options: PhotoUploadOptions,
        on_progress: Optional[ProgressCallback] = None,
        load: Optional[PhotoLoader] = None
    ) -> List[UploadResult]:
        """
        Upload files one at a time, in order. A failure never stops the batch.

        With `load`, each item is a source that is only materialised when its
        turn comes, so at most one file is held in memory at a time.
        """
        results: List[UploadResult] = []
        total = len(files)

        for index, file in enumerate(files, start=1):
            if load is None:
                results.append(await self.upload(file, options))
            else:
                results.append(await self.upload_from(file, options, load))
            if on_progress is not None:
                progress = on_progress(index, total)
                if inspect.isawaitable(progress):
                    await progress

        logger.info(
            "batch_completed",
            total=total,
            succeeded=sum(1 for r in results if r.success)
        )
        return results

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def delete_photo(self, urls: PhotoUrls) -> bool:
        """
        Best-effort deletion of every rendition URL present.

        URLs that do not match their bucket's public URL pattern are skipped.
        Returns False only when a deletion call raised; a provider rejecting
        a deletion is logged, not reported.
        """
        targets = [
            (Rendition.FULL_RES, urls.full_res_url),
            (Rendition.PREVIEW, urls.preview_url),
            (Rendition.THUMBNAIL, urls.thumbnail_url),
            (Rendition.WATERMARKED, urls.watermarked_url),
        ]

        deletions = []
        for rendition, url in targets:
            if not url:
                continue
            bucket = self.buckets[rendition]
            path = self.storage.path_from_public_url(bucket, url)
            if path:
                deletions.append(self._remove(bucket, path))

        try:
            await asyncio.gather(*deletions)
        except Exception as e:
            logger.error("photo_deletion_error", error=str(e), error_type=type(e).__name__)
            return False

        return True

    async def _remove(self, bucket: str, path: str):
        result = await self.storage.remove(bucket, [path])
        record_deletion(bucket, result.ok)
        if not result.ok:
            logger.warning("photo_deletion_rejected", bucket=bucket, path=path, error=result.error)
        else:
            logger.info("rendition_deleted", bucket=bucket, path=path)
