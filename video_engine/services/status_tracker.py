"""Finite-state machine for video assets.

StatusTracker is the only writer of asset records. Every mutation is a
read-modify-write against the AssetStore performed under a per-asset lock,
so transitions for one asset are totally ordered while different assets
proceed independently. Terminal states (ready, error) never change again.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Tuple

from video_engine.core.errors import InvalidTransitionError
from video_engine.core.logging import get_logger
from video_engine.domain.models import OutputFile, TransitionEvent, VideoAsset, VideoStatus

from .asset_store import AssetStore
from .event_log import EventLog

_TRANSITIONS: Dict[Tuple[VideoStatus, TransitionEvent], VideoStatus] = {
    (VideoStatus.ingested, TransitionEvent.submitted): VideoStatus.processing,
    (VideoStatus.processing, TransitionEvent.progressed): VideoStatus.converting,
    (VideoStatus.converting, TransitionEvent.progressed): VideoStatus.converting,
    (VideoStatus.processing, TransitionEvent.completed): VideoStatus.ready,
    (VideoStatus.converting, TransitionEvent.completed): VideoStatus.ready,
    (VideoStatus.ingested, TransitionEvent.failed): VideoStatus.error,
    (VideoStatus.processing, TransitionEvent.failed): VideoStatus.error,
    (VideoStatus.converting, TransitionEvent.failed): VideoStatus.error,
}

# Replays of the event that produced a terminal state leave the record untouched.
_IDEMPOTENT_TERMINAL: Dict[VideoStatus, TransitionEvent] = {
    VideoStatus.ready: TransitionEvent.completed,
    VideoStatus.error: TransitionEvent.failed,
}


def next_status(current: VideoStatus, event: TransitionEvent) -> Optional[VideoStatus]:
    """Return the target status for ``event`` or None when it is not allowed."""
    if _IDEMPOTENT_TERMINAL.get(current) == event:
        return current
    return _TRANSITIONS.get((current, event))


class StatusTracker:
    def __init__(self, store: AssetStore, event_log: EventLog, *, progress_log_step_percent: float = 5.0):
        self.store = store
        self.event_log = event_log
        self.progress_log_step_percent = progress_log_step_percent
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}
        self.logger = get_logger(component="status_tracker")

    def _lock_for(self, asset_id: str) -> asyncio.Lock:
        lock = self._locks.get(asset_id)
        if lock is None:
            lock = self._locks[asset_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def lock(self, asset_id: str) -> AsyncIterator[None]:
        """Hold the asset's writer lock, e.g. while deleting it."""
        lock = self._lock_for(asset_id)
        self._users[asset_id] = self._users.get(asset_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[asset_id] -= 1
            if not self._users[asset_id]:
                del self._users[asset_id]

    def forget(self, asset_id: str) -> None:
        # Callers still holding or queued on the lock keep it alive.
        if not self._users.get(asset_id):
            self._locks.pop(asset_id, None)

    async def create(self, fields: Mapping[str, Any]) -> VideoAsset:
        now = datetime.now(timezone.utc)
        values = dict(fields)
        values.update(
            status=VideoStatus.ingested,
            job_id=None,
            output_files=[],
            created_at=now,
            updated_at=now,
        )
        asset = await self.store.create(values)
        self.event_log.log(
            "info",
            "asset_ingested",
            asset_id=asset.id,
            status=asset.status.value,
            title=asset.title,
            source_ref=asset.source_ref,
        )
        return asset

    async def transition(
        self,
        asset_id: str,
        event: TransitionEvent,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> VideoAsset:
        return await self._apply(asset_id, event, payload or {}, superseded_ok=False)

    async def reconcile(
        self,
        asset_id: str,
        event: TransitionEvent,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> VideoAsset:
        """Apply a remote observation, tolerating a record that is already terminal.

        Two reconcilers may observe the same job; whichever reaches a terminal
        status first wins and the other's late observation is dropped without
        a log entry instead of raising InvalidTransitionError.
        """
        return await self._apply(asset_id, event, payload or {}, superseded_ok=True)

    async def _apply(
        self,
        asset_id: str,
        event: TransitionEvent,
        payload: Mapping[str, Any],
        *,
        superseded_ok: bool,
    ) -> VideoAsset:
        async with self.lock(asset_id):
            asset = await self.store.get(asset_id)
            target = next_status(asset.status, event)
            if target is None and superseded_ok and asset.status.is_terminal:
                self.logger.info(
                    "transition_superseded",
                    asset_id=asset_id,
                    current=asset.status.value,
                    transition=event.value,
                )
                updated = asset
            elif target is None:
                error = InvalidTransitionError(asset_id, asset.status.value, event.value)
                self.event_log.log(
                    "error",
                    "invalid_transition",
                    asset_id=asset_id,
                    current=asset.status.value,
                    transition=event.value,
                )
                raise error
            elif asset.status.is_terminal:
                updated = asset
            elif asset.status == target:
                return await self._record_progress(asset, payload)
            else:
                fields = self._fields_for(asset, target, event, payload)
                fields["status"] = target
                fields["updated_at"] = datetime.now(timezone.utc)
                updated = await self.store.update(asset_id, fields)
                self._log_transition(asset, updated, event, payload)
        if updated.status.is_terminal:
            self.forget(asset_id)
        return updated

    async def _record_progress(self, asset: VideoAsset, payload: Mapping[str, Any]) -> VideoAsset:
        progress = payload.get("progress")
        if progress is None:
            return asset
        last = asset.progress_percent or 0.0
        if progress - last < self.progress_log_step_percent:
            return asset
        updated = await self.store.update(
            asset.id,
            {"progress_percent": float(progress), "updated_at": datetime.now(timezone.utc)},
        )
        self.event_log.log(
            "info",
            "conversion_progress",
            asset_id=asset.id,
            status=updated.status.value,
            progress=round(float(progress), 1),
        )
        return updated

    def _fields_for(
        self,
        asset: VideoAsset,
        target: VideoStatus,
        event: TransitionEvent,
        payload: Mapping[str, Any],
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if event == TransitionEvent.submitted:
            job_id = payload.get("job_id")
            if not job_id:
                raise ValueError("submitted transition requires a job_id")
            if asset.job_id is not None:
                raise InvalidTransitionError(asset.id, asset.status.value, "resubmitted")
            fields["job_id"] = str(job_id)
        elif event == TransitionEvent.progressed:
            progress = payload.get("progress")
            fields["progress_percent"] = float(progress) if progress is not None else 0.0
        elif event == TransitionEvent.completed:
            outputs = [
                item if isinstance(item, OutputFile) else OutputFile(name=item["name"], uri=item["uri"])
                for item in payload.get("output_files") or []
            ]
            fields["output_files"] = outputs
            fields["progress_percent"] = 100.0
        elif event == TransitionEvent.failed:
            fields["error_reason"] = str(payload.get("reason") or "unknown error")
        return fields

    def _log_transition(
        self,
        before: VideoAsset,
        after: VideoAsset,
        event: TransitionEvent,
        payload: Mapping[str, Any],
    ) -> None:
        metadata: Dict[str, Any] = {
            "from_status": before.status.value,
            "to_status": after.status.value,
            "transition": event.value,
        }
        level = "info"
        if event == TransitionEvent.submitted:
            metadata["job_id"] = after.job_id
        elif event == TransitionEvent.progressed:
            metadata["progress"] = after.progress_percent
        elif event == TransitionEvent.completed:
            metadata["output_files"] = [item.as_dict() for item in after.output_files]
        elif event == TransitionEvent.failed:
            level = "error"
            metadata["reason"] = after.error_reason
            if payload.get("error_kind"):
                metadata["error_kind"] = payload["error_kind"]
        self.event_log.log(level, f"status_{after.status.value}", asset_id=after.id, **metadata)


__all__ = ["StatusTracker", "next_status"]
