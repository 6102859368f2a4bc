from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from video_engine.core.errors import NotFoundError
from video_engine.db.models import Video
from video_engine.domain.models import OutputFile, VideoAsset, VideoStatus

_WRITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "original_filename",
        "mime_type",
        "size_bytes",
        "source_ref",
        "thumbnail_ref",
        "duration_seconds",
        "width",
        "height",
        "codec",
        "status",
        "output_profile",
        "job_id",
        "output_files",
        "progress_percent",
        "error_reason",
        "created_at",
        "updated_at",
    }
)


class AssetStore(ABC):
    """Durable mapping from asset id to asset record."""

    @abstractmethod
    async def create(self, fields: Mapping[str, Any]) -> VideoAsset: ...

    @abstractmethod
    async def get(self, asset_id: str) -> VideoAsset: ...

    @abstractmethod
    async def update(self, asset_id: str, fields: Mapping[str, Any]) -> VideoAsset: ...

    @abstractmethod
    async def delete(self, asset_id: str) -> None: ...

    @abstractmethod
    async def list(self) -> Sequence[VideoAsset]: ...


class SqlAssetStore(AssetStore):
    """AssetStore backed by the async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, fields: Mapping[str, Any]) -> VideoAsset:
        values = self._column_values(fields)
        now = datetime.now(timezone.utc)
        values.setdefault("created_at", now)
        values.setdefault("updated_at", values["created_at"])
        values.setdefault("status", VideoStatus.ingested)
        async with self.session_factory() as session:
            video = Video(id=uuid4().hex, **values)
            session.add(video)
            await session.commit()
            await session.refresh(video)
            return _to_domain(video)

    async def get(self, asset_id: str) -> VideoAsset:
        async with self.session_factory() as session:
            video = await session.get(Video, asset_id)
            if video is None:
                raise NotFoundError(asset_id)
            return _to_domain(video)

    async def update(self, asset_id: str, fields: Mapping[str, Any]) -> VideoAsset:
        values = self._column_values(fields)
        async with self.session_factory() as session:
            video = await session.get(Video, asset_id)
            if video is None:
                raise NotFoundError(asset_id)
            for name, value in values.items():
                setattr(video, name, value)
            await session.commit()
            await session.refresh(video)
            return _to_domain(video)

    async def delete(self, asset_id: str) -> None:
        async with self.session_factory() as session:
            video = await session.get(Video, asset_id)
            if video is None:
                raise NotFoundError(asset_id)
            await session.delete(video)
            await session.commit()

    async def list(self) -> Sequence[VideoAsset]:
        async with self.session_factory() as session:
            stmt = select(Video).order_by(Video.created_at.desc(), Video.id)
            result = await session.execute(stmt)
            return [_to_domain(video) for video in result.scalars().all()]

    @staticmethod
    def _column_values(fields: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown_asset_fields:{','.join(sorted(unknown))}")
        values = dict(fields)
        if "output_files" in values:
            values["output_files"] = [
                item.as_dict() if isinstance(item, OutputFile) else dict(item) for item in values["output_files"] or []
            ]
        return values


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_domain(video: Video) -> VideoAsset:
    return VideoAsset(
        id=video.id,
        title=video.title,
        description=video.description,
        original_filename=video.original_filename,
        mime_type=video.mime_type,
        size_bytes=video.size_bytes,
        source_ref=video.source_ref,
        thumbnail_ref=video.thumbnail_ref,
        duration_seconds=video.duration_seconds,
        width=video.width,
        height=video.height,
        codec=video.codec,
        status=video.status,
        output_profile=video.output_profile,
        job_id=video.job_id,
        output_files=tuple(OutputFile(name=item["name"], uri=item["uri"]) for item in video.output_files or []),
        progress_percent=video.progress_percent,
        error_reason=video.error_reason,
        created_at=_aware(video.created_at),
        updated_at=_aware(video.updated_at),
    )


__all__ = ["AssetStore", "SqlAssetStore"]
