from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence, Union
from uuid import uuid4

from video_engine.core.config import Settings
from video_engine.core.db import create_engine, create_session_factory
from video_engine.core.storage import Storage, get_storage
from video_engine.domain.models import (
    IngestRequest,
    MediaMetadata,
    OutputFile,
    RemoteJobStatus,
    UploadedFile,
)
from video_engine.ingest.probe import MediaProbe
from video_engine.services.asset_store import SqlAssetStore
from video_engine.services.engine import VideoEngine
from video_engine.services.transcode import TranscodeProvider

DEFAULT_METADATA = MediaMetadata(duration_seconds=120.0, width=1920, height=1080, codec="h264", container="mp4")
PROXY_OUTPUT = OutputFile(name="proxy.mp4", uri="s3://bucket/proxy.mp4")

ScriptItem = Union[RemoteJobStatus, BaseException]


class FakeProbe(MediaProbe):
    """Writes a placeholder thumbnail into storage and returns canned metadata."""

    def __init__(
        self,
        storage: Storage,
        *,
        metadata: MediaMetadata = DEFAULT_METADATA,
        thumbnail_error: Optional[Exception] = None,
        metadata_error: Optional[Exception] = None,
        thumbnail_delay: float = 0.0,
        metadata_delay: float = 0.0,
    ):
        self.storage = storage
        self.metadata = metadata
        self.thumbnail_error = thumbnail_error
        self.metadata_error = metadata_error
        self.thumbnail_delay = thumbnail_delay
        self.metadata_delay = metadata_delay
        self.thumbnails: List[str] = []
        self.cancelled: List[str] = []

    async def extract_thumbnail(self, path: Path) -> str:
        try:
            await asyncio.sleep(self.thumbnail_delay)
        except asyncio.CancelledError:
            self.cancelled.append("thumbnail")
            raise
        if self.thumbnail_error is not None:
            raise self.thumbnail_error
        key = f"thumbnails/{uuid4().hex}.jpg"
        self.storage.write_bytes(key, b"\xff\xd8\xff\xe0fake-jpeg")
        self.thumbnails.append(key)
        return key

    async def extract_metadata(self, path: Path) -> MediaMetadata:
        try:
            await asyncio.sleep(self.metadata_delay)
        except asyncio.CancelledError:
            self.cancelled.append("metadata")
            raise
        if self.metadata_error is not None:
            raise self.metadata_error
        return self.metadata


class FakeProvider(TranscodeProvider):
    """Scripted provider: each poll consumes one script item, the last one repeats."""

    def __init__(
        self,
        script: Sequence[ScriptItem] = (
            RemoteJobStatus(remote_state="progressing", progress_percent=40.0),
            RemoteJobStatus(remote_state="complete"),
        ),
        *,
        outputs: Sequence[OutputFile] = (PROXY_OUTPUT,),
        submit_errors: Sequence[BaseException] = (),
        poll_delay: float = 0.0,
    ):
        self.script = list(script)
        self.outputs = list(outputs)
        self.submit_errors = list(submit_errors)
        self.poll_delay = poll_delay
        self.submitted: List[tuple[str, str]] = []
        self.poll_calls = 0
        self.fetch_calls = 0

    async def submit_job(self, source_ref: str, output_profile: str) -> str:
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append((source_ref, output_profile))
        return f"job-{len(self.submitted)}"

    async def poll_job(self, job_id: str) -> RemoteJobStatus:
        self.poll_calls += 1
        if self.poll_delay:
            await asyncio.sleep(self.poll_delay)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def fetch_outputs(self, job_id: str) -> List[OutputFile]:
        self.fetch_calls += 1
        return list(self.outputs)


@asynccontextmanager
async def running_engine(
    settings: Settings,
    *,
    provider: TranscodeProvider,
    probe: Optional[MediaProbe] = None,
    start: bool = True,
) -> AsyncIterator[VideoEngine]:
    db_engine = create_engine(settings)
    storage = get_storage(settings)
    engine = VideoEngine(
        settings,
        store=SqlAssetStore(create_session_factory(db_engine)),
        storage=storage,
        probe=probe or FakeProbe(storage),
        provider=provider,
    )
    if start:
        await engine.start()
    try:
        yield engine
    finally:
        await engine.shutdown()
        await db_engine.dispose()


def make_upload(path: Path, *, content_type: str = "video/mp4", size_bytes: Optional[int] = None) -> UploadedFile:
    return UploadedFile(
        path=path,
        filename=path.name,
        content_type=content_type,
        size_bytes=path.stat().st_size if size_bytes is None else size_bytes,
    )


def make_request(title: str = "Launch clip", **kwargs) -> IngestRequest:
    return IngestRequest(title=title, **kwargs)
