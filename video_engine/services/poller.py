from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from video_engine.core.config import Settings
from video_engine.core.errors import EngineError, NotFoundError, ServiceError
from video_engine.core.logging import get_logger
from video_engine.core.retry import with_retry
from video_engine.domain.models import RemoteJobStatus, TransitionEvent, VideoAsset

from .cancellation import CancellationRegistry, CancellationToken
from .status_tracker import StatusTracker
from .transcode import TranscodeProvider

MAX_ESTIMATE_PERCENT = 99.0


class ProgressPoller:
    """Reconciles one remote transcode job into the asset's status.

    The wait between polls is the only place the loop sleeps; the token is
    checked before every provider call and again before every write, so a
    deleted asset sees no further writes once the current call returns.
    """

    def __init__(
        self,
        asset_id: str,
        job_id: str,
        *,
        provider: TranscodeProvider,
        tracker: StatusTracker,
        token: CancellationToken,
        settings: Settings,
        duration_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.asset_id = asset_id
        self.job_id = job_id
        self.provider = provider
        self.tracker = tracker
        self.token = token
        self.settings = settings
        self.duration_seconds = duration_seconds
        self.clock = clock
        self.started_at = clock()
        self.progress = 0.0
        self.last_emitted: Optional[float] = None
        self.polls = 0
        self.logger = get_logger(component="progress_poller", asset_id=asset_id, job_id=job_id)

    async def run(self) -> Optional[VideoAsset]:
        self.logger.info("poller_started", interval_s=self.settings.poll_interval_s)
        while not self.token.cancelled:
            try:
                finished, asset = await self.poll_once()
            except NotFoundError:
                self.logger.info("poller_asset_gone")
                return None
            if finished:
                if asset is not None:
                    self.logger.info("poller_finished", status=asset.status.value, polls=self.polls)
                return asset
            if await self.token.wait(self.settings.poll_interval_s):
                break
        self.logger.info("poller_cancelled", polls=self.polls)
        return None

    async def poll_once(self) -> Tuple[bool, Optional[VideoAsset]]:
        """Run one reconcile step. Returns (finished, asset)."""
        if self.token.cancelled:
            return True, None
        self.polls += 1
        try:
            remote = await self._retry("poll_job", lambda: self.provider.poll_job(self.job_id))
        except ServiceError as exc:
            if self.token.cancelled:
                return True, None
            return True, await self._fail(exc.message, error_kind=exc.kind.value)
        if self.token.cancelled:
            return True, None

        if remote.remote_state == "progressing":
            asset = await self._on_progressing(remote)
            return asset is not None and asset.status.is_terminal, asset
        if remote.remote_state == "complete":
            return True, await self._on_complete()
        if remote.remote_state == "error":
            return True, await self._fail(remote.reason or "remote transcode failed", error_kind="remote")
        return False, None

    def estimate_progress(self, remote: RemoteJobStatus) -> float:
        measured: List[float] = []
        counters = remote.frame_counters
        if counters is not None and counters.total > 0:
            measured.append(100.0 * counters.processed / counters.total)
        if remote.progress_percent is not None:
            measured.append(float(remote.progress_percent))
        if measured:
            estimate = max(measured)
        else:
            expected = max(
                (self.duration_seconds or 0.0) * self.settings.expected_transcode_ratio,
                self.settings.min_expected_transcode_s,
            )
            estimate = 100.0 * (self.clock() - self.started_at) / expected
        estimate = min(max(estimate, 0.0), MAX_ESTIMATE_PERCENT)
        self.progress = max(self.progress, estimate)
        return self.progress

    async def _on_progressing(self, remote: RemoteJobStatus) -> Optional[VideoAsset]:
        progress = self.estimate_progress(remote)
        step = self.settings.progress_log_step_percent
        if self.last_emitted is not None and progress - self.last_emitted < step:
            return None
        asset = await self.tracker.reconcile(self.asset_id, TransitionEvent.progressed, {"progress": progress})
        self.last_emitted = progress
        return asset

    async def _on_complete(self) -> Optional[VideoAsset]:
        try:
            outputs = await self._retry("fetch_outputs", lambda: self.provider.fetch_outputs(self.job_id))
        except ServiceError as exc:
            if self.token.cancelled:
                return None
            return await self._fail(exc.message, error_kind=exc.kind.value)
        if self.token.cancelled:
            return None
        if not outputs:
            return await self._fail("provider returned no outputs", error_kind="remote")
        return await self.tracker.reconcile(
            self.asset_id,
            TransitionEvent.completed,
            {"output_files": outputs},
        )

    async def _fail(self, reason: str, *, error_kind: str) -> VideoAsset:
        return await self.tracker.reconcile(
            self.asset_id,
            TransitionEvent.failed,
            {"reason": reason, "error_kind": error_kind},
        )

    async def _retry(self, operation: str, fn):
        return await with_retry(
            fn,
            operation=operation,
            attempts=self.settings.retry_attempts,
            base_delay_s=self.settings.retry_base_delay_s,
        )


@dataclass(frozen=True, slots=True)
class PollRequest:
    asset_id: str
    job_id: str
    token: CancellationToken


class PollerPool:
    """Runs ProgressPollers on a fixed number of workers; extra jobs wait in the queue."""

    def __init__(
        self,
        *,
        provider: TranscodeProvider,
        tracker: StatusTracker,
        registry: CancellationRegistry,
        settings: Settings,
    ):
        self.provider = provider
        self.tracker = tracker
        self.registry = registry
        self.settings = settings
        self.max_active = settings.max_active_pollers
        self.queue: asyncio.Queue[PollRequest] = asyncio.Queue()
        self.active = 0
        self.peak_active = 0
        self._workers: List[asyncio.Task[None]] = []
        self.logger = get_logger(component="poller_pool")

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"poller-worker-{index}") for index in range(self.max_active)
        ]
        self.logger.info("poller_pool_started", workers=self.max_active)

    async def stop(self) -> None:
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self.logger.info("poller_pool_stopped", pending=self.queue.qsize())

    def enqueue(self, asset_id: str, job_id: str, token: Optional[CancellationToken] = None) -> None:
        request = PollRequest(asset_id=asset_id, job_id=job_id, token=token or self.registry.token_for(asset_id))
        self.queue.put_nowait(request)
        self.logger.info("poller_enqueued", asset_id=asset_id, job_id=job_id, queued=self.queue.qsize())

    async def join(self) -> None:
        await self.queue.join()

    def build_poller(self, asset: VideoAsset, token: CancellationToken) -> ProgressPoller:
        if asset.job_id is None:
            raise ValueError(f"asset {asset.id} has no transcode job")
        return ProgressPoller(
            asset.id,
            asset.job_id,
            provider=self.provider,
            tracker=self.tracker,
            token=token,
            settings=self.settings,
            duration_seconds=asset.duration_seconds,
        )

    async def _worker(self, index: int) -> None:
        while True:
            request = await self.queue.get()
            try:
                if request.token.cancelled:
                    self.logger.info("poller_skipped_cancelled", asset_id=request.asset_id)
                    continue
                self.active += 1
                self.peak_active = max(self.peak_active, self.active)
                try:
                    await self._run(request)
                finally:
                    self.active -= 1
            finally:
                self.queue.task_done()

    async def _run(self, request: PollRequest) -> None:
        try:
            asset = await self.tracker.store.get(request.asset_id)
            poller = self.build_poller(asset, request.token)
            result = await poller.run()
            if result is not None and result.status.is_terminal:
                self.registry.discard(request.asset_id)
        except NotFoundError:
            self.logger.info("poller_asset_missing", asset_id=request.asset_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.exception("poller_crashed", asset_id=request.asset_id, job_id=request.job_id)
            if request.token.cancelled:
                return
            try:
                await self.tracker.reconcile(
                    request.asset_id,
                    TransitionEvent.failed,
                    {
                        "reason": f"poller failure: {exc}",
                        "error_kind": exc.kind.value if isinstance(exc, EngineError) else "internal",
                    },
                )
            except EngineError:
                self.logger.exception("poller_failure_not_recorded", asset_id=request.asset_id)


__all__ = ["ProgressPoller", "PollerPool", "PollRequest"]
