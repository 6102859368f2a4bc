from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from video_engine.core.retry import TransientProviderError
from video_engine.domain.models import FrameCounters, RemoteJobStatus, VideoStatus
from video_engine.services.cancellation import CancellationToken
from video_engine.services.poller import ProgressPoller
from tests.fakes import FakeProvider, make_request, make_upload, running_engine


def _progressing(percent=None, frames=None):
    return RemoteJobStatus(remote_state="progressing", progress_percent=percent, frame_counters=frames)


def test_remote_error_marks_asset_error_with_reason(settings, sample_video):
    provider = FakeProvider([RemoteJobStatus(remote_state="error", reason="Unsupported codec: prores_raw")])

    async def scenario():
        async with running_engine(settings, provider=provider) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            await asyncio.wait_for(engine.pool.join(), timeout=5)
            return await engine.get_asset(asset.id), engine.logs_for(asset.id)

    asset, logs = asyncio.run(scenario())

    assert asset.status == VideoStatus.error
    assert asset.error_reason == "Unsupported codec: prores_raw"
    last = logs[-1]
    assert last.level == "error"
    assert last.message == "status_error"
    assert last.metadata["reason"] == "Unsupported codec: prores_raw"
    assert last.metadata["from_status"] == "processing"


def test_deleted_asset_sees_no_further_writes(settings, sample_video):
    provider = FakeProvider([_progressing(10.0), _progressing(60.0), RemoteJobStatus(remote_state="complete")])

    async def scenario():
        async with running_engine(settings, provider=provider, start=False) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            poller = engine.pool.build_poller(asset, engine.registry.token_for(asset.id))
            finished, converting = await poller.poll_once()
            assert not finished
            assert converting.status == VideoStatus.converting

            await engine.delete_asset(asset.id)
            entries_after_delete = len(engine.logs_for(asset.id))
            polls_after_delete = provider.poll_calls

            with patch.object(engine.store, "update", wraps=engine.store.update) as update_spy:
                for _ in range(3):
                    assert await poller.poll_once() == (True, None)
                writes = update_spy.call_count
            return engine, asset, entries_after_delete, polls_after_delete, writes

    engine, asset, entries_after_delete, polls_after_delete, writes = asyncio.run(scenario())

    assert len(engine.logs_for(asset.id)) == entries_after_delete
    assert provider.poll_calls == polls_after_delete
    assert writes == 0


def test_cancellation_wakes_a_sleeping_poller(monkeypatch, settings, sample_video):
    monkeypatch.setattr(settings, "poll_interval_s", 60.0)
    provider = FakeProvider([_progressing(20.0)])

    async def scenario():
        async with running_engine(settings, provider=provider) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            for _ in range(200):
                current = await engine.get_asset(asset.id)
                if current.status == VideoStatus.converting:
                    break
                await asyncio.sleep(0.01)
            await engine.delete_asset(asset.id)
            await asyncio.wait_for(engine.pool.join(), timeout=2)
            return engine, asset

    engine, asset = asyncio.run(scenario())

    assert provider.poll_calls == 1
    assert engine.logs_for(asset.id)[-1].message == "asset_deleted"
    assert engine.pool.active == 0


def test_refresh_after_completion_is_idempotent(settings, sample_video):
    provider = FakeProvider([RemoteJobStatus(remote_state="complete")])

    async def scenario():
        async with running_engine(settings, provider=provider, start=False) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            ready = await engine.refresh_asset(asset.id)
            entries = len(engine.logs_for(asset.id))
            poller = engine.pool.build_poller(ready, CancellationToken())
            replayed = await poller.poll_once()
            again = await engine.refresh_asset(asset.id)
            return engine, ready, entries, replayed, again

    engine, ready, entries, replayed, again = asyncio.run(scenario())

    assert ready.status == VideoStatus.ready
    assert replayed[0] is True
    assert replayed[1].output_files == ready.output_files
    assert again == ready
    assert len(engine.logs_for(ready.id)) == entries
    assert provider.fetch_calls == 2


def test_refresh_completing_first_leaves_pool_poller_quiet(settings, sample_video):
    class GatedProvider(FakeProvider):
        def __init__(self):
            super().__init__([RemoteJobStatus(remote_state="complete")])
            self.entered = asyncio.Event()
            self.release = asyncio.Event()

        async def poll_job(self, job_id):
            self.poll_calls += 1
            if self.poll_calls == 1:
                self.entered.set()
                await self.release.wait()
                return _progressing(50.0)
            return RemoteJobStatus(remote_state="complete")

    async def scenario():
        provider = GatedProvider()
        async with running_engine(settings, provider=provider) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            await asyncio.wait_for(provider.entered.wait(), timeout=5)
            refreshed = await engine.refresh_asset(asset.id)
            provider.release.set()
            await asyncio.wait_for(engine.pool.join(), timeout=5)
            return refreshed, await engine.get_asset(asset.id), engine.logs_for(asset.id)

    refreshed, final, logs = asyncio.run(scenario())

    assert refreshed.status == VideoStatus.ready
    assert final.status == VideoStatus.ready
    assert final.output_files == refreshed.output_files
    assert [entry for entry in logs if entry.level == "error"] == []
    assert [entry.message for entry in logs] == ["asset_ingested", "status_processing", "status_ready"]


def test_progress_is_relogged_only_on_five_point_steps(settings, sample_video):
    provider = FakeProvider(
        [
            _progressing(10.0),
            _progressing(12.0),
            _progressing(14.9),
            _progressing(15.0),
            _progressing(17.0),
            _progressing(40.0),
            RemoteJobStatus(remote_state="complete"),
        ]
    )

    async def scenario():
        async with running_engine(settings, provider=provider) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            await asyncio.wait_for(engine.pool.join(), timeout=5)
            return engine.logs_for(asset.id)

    logs = asyncio.run(scenario())
    progress = [entry.metadata["progress"] for entry in logs if entry.message in {"status_converting", "conversion_progress"}]
    assert progress == [10.0, 15.0, 40.0]
    assert logs[-1].message == "status_ready"


def test_polling_failure_after_retries_marks_asset_error(settings, sample_video):
    provider = FakeProvider([TransientProviderError("connection reset")])

    async def scenario():
        async with running_engine(settings, provider=provider) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            await asyncio.wait_for(engine.pool.join(), timeout=5)
            return await engine.get_asset(asset.id), engine.logs_for(asset.id)

    asset, logs = asyncio.run(scenario())

    assert asset.status == VideoStatus.error
    assert provider.poll_calls == settings.retry_attempts
    assert "connection reset" in asset.error_reason
    assert logs[-1].metadata["error_kind"] == "service"


def test_completion_without_outputs_is_an_error(settings, sample_video):
    provider = FakeProvider([RemoteJobStatus(remote_state="complete")], outputs=[])

    async def scenario():
        async with running_engine(settings, provider=provider) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            await asyncio.wait_for(engine.pool.join(), timeout=5)
            return await engine.get_asset(asset.id)

    asset = asyncio.run(scenario())
    assert asset.status == VideoStatus.error
    assert asset.error_reason == "provider returned no outputs"
    assert asset.output_files == ()


def test_pool_bounds_concurrent_pollers(monkeypatch, settings, sample_video):
    monkeypatch.setattr(settings, "max_active_pollers", 2)
    provider = FakeProvider(
        [RemoteJobStatus(remote_state="queued")] * 3 + [RemoteJobStatus(remote_state="complete")],
        poll_delay=0.01,
    )

    async def scenario():
        async with running_engine(settings, provider=provider, start=False) as engine:
            ids = []
            for index in range(5):
                asset = await engine.ingest(make_upload(sample_video), make_request(title=f"clip {index}"))
                ids.append(asset.id)
            assert engine.pool.queue.qsize() == 5
            engine.pool.start()
            await asyncio.wait_for(engine.pool.join(), timeout=10)
            return engine, [await engine.get_asset(asset_id) for asset_id in ids]

    engine, assets = asyncio.run(scenario())

    assert engine.pool.peak_active == 2
    assert all(asset.status == VideoStatus.ready for asset in assets)


def test_poller_stops_quietly_when_record_disappears(settings, sample_video):
    provider = FakeProvider([_progressing(30.0)])

    async def scenario():
        async with running_engine(settings, provider=provider, start=False) as engine:
            asset = await engine.ingest(make_upload(sample_video), make_request())
            await engine.store.delete(asset.id)
            poller = engine.pool.build_poller(asset, CancellationToken())
            return await poller.run(), len(engine.event_log)

    result, log_size_after = asyncio.run(scenario())
    assert result is None
    assert log_size_after == 2


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture()
def estimating_poller(settings):
    clock = _Clock()
    poller = ProgressPoller(
        "asset",
        "job",
        provider=FakeProvider(),
        tracker=None,
        token=CancellationToken(),
        settings=settings,
        duration_seconds=100.0,
        clock=clock,
    )
    return poller, clock


def test_estimate_uses_elapsed_time_without_remote_signal(estimating_poller):
    poller, clock = estimating_poller
    clock.now = 50.0
    assert poller.estimate_progress(_progressing()) == pytest.approx(50.0)
    clock.now = 500.0
    assert poller.estimate_progress(_progressing()) == 99.0


def test_estimate_prefers_frame_counters_and_never_decreases(estimating_poller):
    poller, clock = estimating_poller
    clock.now = 90.0
    assert poller.estimate_progress(_progressing(frames=FrameCounters(processed=250, total=1000))) == 25.0
    assert poller.estimate_progress(_progressing(percent=40.0, frames=FrameCounters(processed=300, total=1000))) == 40.0
    assert poller.estimate_progress(_progressing(percent=35.0)) == 40.0
    assert poller.estimate_progress(_progressing(percent=100.0)) == 99.0
