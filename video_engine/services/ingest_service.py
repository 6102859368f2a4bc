from __future__ import annotations

import asyncio
from pathlib import PurePosixPath
from typing import Any, Tuple
from uuid import uuid4

from video_engine.core.config import Settings
from video_engine.core.errors import EngineError, NotFoundError, ProcessingError, ValidationError
from video_engine.core.logging import get_logger
from video_engine.core.retry import with_retry
from video_engine.core.storage import Storage
from video_engine.domain.models import IngestRequest, MediaMetadata, TransitionEvent, UploadedFile, VideoAsset
from video_engine.ingest.probe import MediaProbe

from .cancellation import CancellationRegistry
from .event_log import EventLog
from .poller import PollerPool
from .status_tracker import StatusTracker
from .transcode import TranscodeProvider


def _safe_filename(filename: str) -> str:
    name = PurePosixPath(filename.replace("\\", "/")).name.strip()
    return name or "upload"


def _normalise_mime(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


class IngestCoordinator:
    """Turns an upload into a tracked asset with a submitted transcode job.

    Extraction is all-or-nothing: either both the thumbnail and the metadata
    are produced and a record is created, or nothing is left behind.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        storage: Storage,
        probe: MediaProbe,
        provider: TranscodeProvider,
        tracker: StatusTracker,
        event_log: EventLog,
        registry: CancellationRegistry,
        pool: PollerPool,
    ):
        self.settings = settings
        self.storage = storage
        self.probe = probe
        self.provider = provider
        self.tracker = tracker
        self.event_log = event_log
        self.registry = registry
        self.pool = pool
        self.logger = get_logger(component="ingest_coordinator")

    def validate(self, upload: UploadedFile, request: IngestRequest) -> IngestRequest:
        """Check the upload and fill in defaults. Performs no side effects."""
        limit = self.settings.max_upload_size_bytes
        if upload.size_bytes <= 0:
            raise ValidationError("Uploaded file is empty", field="file")
        if upload.size_bytes > limit:
            raise ValidationError(
                "File size exceeds limit",
                field="file",
                details={"size_bytes": upload.size_bytes, "max_size_bytes": limit},
            )
        mime = _normalise_mime(upload.content_type)
        if mime not in self.settings.allowed_mime_types:
            raise ValidationError(
                "Invalid file type",
                field="file",
                details={"content_type": upload.content_type, "allowed": list(self.settings.allowed_mime_types)},
            )
        title = (request.title or "").strip() or _safe_filename(upload.filename)
        profile = request.output_profile or self.settings.default_output_profile
        if profile not in self.settings.output_profiles:
            raise ValidationError(
                f"Unknown output profile: {profile}",
                field="output_profile",
                details={"profiles": sorted(self.settings.output_profiles)},
            )
        if not upload.path.is_file():
            raise ValidationError("Uploaded file is missing", field="file")
        description = (request.description or "").strip() or None
        return IngestRequest(title=title, description=description, output_profile=profile)

    async def submit(self, upload: UploadedFile, request: IngestRequest) -> VideoAsset:
        request = self.validate(upload, request)
        filename = _safe_filename(upload.filename)
        upload_prefix = f"uploads/{uuid4().hex}"
        source_ref = f"{upload_prefix}/{filename}"
        await asyncio.to_thread(self.storage.put_file, source_ref, upload.path)
        self.logger.info("upload_stored", source_ref=source_ref, size_bytes=upload.size_bytes)

        thumbnail_ref, metadata = await self._extract(source_ref, upload_prefix, filename)

        asset = await self.tracker.create(
            {
                "title": request.title,
                "description": request.description,
                "original_filename": filename,
                "mime_type": _normalise_mime(upload.content_type),
                "size_bytes": upload.size_bytes,
                "source_ref": source_ref,
                "thumbnail_ref": thumbnail_ref,
                "duration_seconds": metadata.duration_seconds,
                "width": metadata.width,
                "height": metadata.height,
                "codec": metadata.codec,
                "output_profile": request.output_profile,
            }
        )
        token = self.registry.token_for(asset.id)

        try:
            job_id = await with_retry(
                lambda: self.provider.submit_job(self.storage.uri_for(source_ref), request.output_profile),
                operation="submit_job",
                attempts=self.settings.retry_attempts,
                base_delay_s=self.settings.retry_base_delay_s,
            )
        except Exception as exc:
            if token.cancelled:
                raise NotFoundError(asset.id) from exc
            if isinstance(exc, EngineError):
                reason, error_kind = exc.message, exc.kind.value
            else:
                reason, error_kind = f"transcode submission failed: {exc}", "internal"
            await self.tracker.transition(
                asset.id,
                TransitionEvent.failed,
                {"reason": reason, "error_kind": error_kind},
            )
            self.registry.discard(asset.id)
            self.logger.error("ingest_submit_failed", asset_id=asset.id, error=reason, error_kind=error_kind)
            raise

        if token.cancelled:
            self.logger.info("ingest_abandoned", asset_id=asset.id, job_id=job_id)
            raise NotFoundError(asset.id)

        asset = await self.tracker.transition(asset.id, TransitionEvent.submitted, {"job_id": job_id})
        self.pool.enqueue(asset.id, job_id, token)
        self.logger.info("ingest_submitted", asset_id=asset.id, job_id=job_id, profile=request.output_profile)
        return asset

    async def _extract(self, source_ref: str, upload_prefix: str, filename: str) -> Tuple[str, MediaMetadata]:
        path = self.storage.path_for(source_ref)
        thumbnail_task = asyncio.create_task(self.probe.extract_thumbnail(path))
        metadata_task = asyncio.create_task(self.probe.extract_metadata(path))
        tasks = (thumbnail_task, metadata_task)
        try:
            thumbnail_ref, metadata = await asyncio.gather(*tasks)
        except BaseException as exc:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._discard_partial(upload_prefix, thumbnail_task)
            if not isinstance(exc, Exception):
                raise
            error = exc if isinstance(exc, ProcessingError) else self._as_processing_error(exc)
            self.event_log.log(
                "error",
                "extraction_failed",
                filename=filename,
                reason=error.message,
                details=error.details,
            )
            if error is exc:
                raise
            raise error from exc
        return thumbnail_ref, metadata

    def _discard_partial(self, upload_prefix: str, thumbnail_task: "asyncio.Task[Any]") -> None:
        self.storage.delete_prefix(upload_prefix)
        if thumbnail_task.cancelled() or thumbnail_task.exception() is not None:
            return
        self.storage.delete(thumbnail_task.result())

    @staticmethod
    def _as_processing_error(exc: Exception) -> ProcessingError:
        if isinstance(exc, EngineError):
            return ProcessingError(exc.message, details={**exc.details, "cause_kind": exc.kind.value})
        return ProcessingError(f"Media extraction failed: {exc}", details={"cause": type(exc).__name__})


__all__ = ["IngestCoordinator"]
