from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import PurePosixPath
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from video_engine.core.config import Settings
from video_engine.core.logging import get_logger
from video_engine.core.storage import Storage, get_storage
from video_engine.domain.models import IngestRequest, LogEntry, UploadedFile, VideoAsset, VideoStatus
from video_engine.ingest.probe import FFmpegProbe, MediaProbe

from .asset_store import AssetStore, SqlAssetStore
from .cancellation import CancellationRegistry
from .event_log import EventLog
from .ingest_service import IngestCoordinator
from .poller import PollerPool
from .status_tracker import StatusTracker
from .transcode import TranscodeProvider, get_transcode_provider

_IN_FLIGHT = (VideoStatus.processing, VideoStatus.converting)


class VideoEngine:
    """Wires the lifecycle components together behind one object.

    One instance lives for the life of the process; ``start`` and ``shutdown``
    are bound to the application lifespan.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: AssetStore,
        storage: Storage,
        probe: MediaProbe,
        provider: TranscodeProvider,
        event_log: Optional[EventLog] = None,
    ):
        self.settings = settings
        self.store = store
        self.storage = storage
        self.probe = probe
        self.provider = provider
        self.event_log = event_log or EventLog(capacity=settings.event_log_capacity)
        self.tracker = StatusTracker(
            store,
            self.event_log,
            progress_log_step_percent=settings.progress_log_step_percent,
        )
        self.registry = CancellationRegistry()
        self.pool = PollerPool(provider=provider, tracker=self.tracker, registry=self.registry, settings=settings)
        self.coordinator = IngestCoordinator(
            settings,
            storage=storage,
            probe=probe,
            provider=provider,
            tracker=self.tracker,
            event_log=self.event_log,
            registry=self.registry,
            pool=self.pool,
        )
        self.logger = get_logger(component="video_engine")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        provider: Optional[TranscodeProvider] = None,
        probe: Optional[MediaProbe] = None,
        storage: Optional[Storage] = None,
    ) -> "VideoEngine":
        storage = storage or get_storage(settings)
        return cls(
            settings,
            store=SqlAssetStore(session_factory),
            storage=storage,
            probe=probe or FFmpegProbe(storage),
            provider=provider or get_transcode_provider(settings),
        )

    async def start(self) -> None:
        self.pool.start()
        resumed = 0
        for asset in await self.store.list():
            if asset.status in _IN_FLIGHT and asset.job_id:
                self.pool.enqueue(asset.id, asset.job_id)
                resumed += 1
        self.logger.info("engine_started", resumed_pollers=resumed)

    async def shutdown(self) -> None:
        await self.pool.stop()
        self.logger.info("engine_stopped")

    async def ingest(self, upload: UploadedFile, request: IngestRequest) -> VideoAsset:
        return await self.coordinator.submit(upload, request)

    async def get_asset(self, asset_id: str) -> VideoAsset:
        return await self.store.get(asset_id)

    async def list_assets(self) -> Sequence[VideoAsset]:
        return await self.store.list()

    async def delete_asset(self, asset_id: str) -> None:
        await self.store.get(asset_id)
        self.registry.cancel(asset_id)
        async with self.tracker.lock(asset_id):
            asset = await self.store.get(asset_id)
            await self.store.delete(asset_id)
        await asyncio.to_thread(self._delete_blobs, asset)
        self.event_log.log(
            "info",
            "asset_deleted",
            asset_id=asset_id,
            status=asset.status.value,
            job_id=asset.job_id,
        )
        self.tracker.forget(asset_id)
        self.registry.discard(asset_id)

    async def refresh_asset(self, asset_id: str) -> VideoAsset:
        """Reconcile the asset with its remote job once, outside the poll schedule."""
        asset = await self.store.get(asset_id)
        if asset.status.is_terminal or asset.job_id is None:
            return asset
        poller = self.pool.build_poller(asset, self.registry.token_for(asset_id))
        finished, updated = await poller.poll_once()
        if finished and updated is not None and updated.status.is_terminal:
            self.registry.discard(asset_id)
        return updated or await self.store.get(asset_id)

    def logs_for(self, asset_id: str) -> List[LogEntry]:
        return self.event_log.by_asset(asset_id)

    def logs_between(self, start: datetime, end: datetime) -> List[LogEntry]:
        return self.event_log.by_time_range(start, end)

    def _delete_blobs(self, asset: VideoAsset) -> None:
        parent = PurePosixPath(asset.source_ref).parent
        if parent.parts and parent.parts[0] == "uploads" and len(parent.parts) > 1:
            self.storage.delete_prefix(parent.as_posix())
        else:
            self.storage.delete(asset.source_ref)
        if asset.thumbnail_ref:
            self.storage.delete(asset.thumbnail_ref)


__all__ = ["VideoEngine"]
