from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from video_engine.core.errors import ProcessingError
from video_engine.core.storage import LocalStorage
from video_engine.ingest.probe import FFmpegProbe
from video_engine.ingest.thumbnails import THUMB_WIDTH, ThumbnailError, render_thumbnail


def test_render_thumbnail_scales_to_width(generated_video_file: Path, tmp_path: Path):
    output = tmp_path / "thumbs" / "poster.jpg"

    width, height = render_thumbnail(str(generated_video_file), output)

    assert output.exists()
    assert width == THUMB_WIDTH
    assert height == 180


def test_render_thumbnail_falls_back_to_first_frame(generated_video_file: Path, tmp_path: Path):
    output = tmp_path / "poster.jpg"
    width, _ = render_thumbnail(str(generated_video_file), output, offsets_s=(30.0, 0.0))
    assert width == THUMB_WIDTH


def test_render_thumbnail_rejects_non_video(generated_video_file: Path, tmp_path: Path):
    bogus = tmp_path / "notes.mp4"
    bogus.write_text("not a video")
    with pytest.raises(ThumbnailError):
        render_thumbnail(str(bogus), tmp_path / "poster.jpg")
    assert not (tmp_path / "poster.jpg").exists()


def test_ffmpeg_probe_extracts_both(generated_video_file: Path, tmp_path: Path):
    storage = LocalStorage(tmp_path / "store")
    probe = FFmpegProbe(storage)

    async def run():
        return await asyncio.gather(
            probe.extract_thumbnail(generated_video_file),
            probe.extract_metadata(generated_video_file),
        )

    key, metadata = asyncio.run(run())

    assert key.startswith("thumbnails/")
    assert storage.exists(key)
    assert (metadata.width, metadata.height) == (640, 360)
    assert metadata.duration_seconds == pytest.approx(2.0, abs=0.1)


def test_ffmpeg_probe_reports_processing_errors(generated_video_file: Path, tmp_path: Path):
    storage = LocalStorage(tmp_path / "store")
    bogus = tmp_path / "broken.mp4"
    bogus.write_bytes(b"\x00" * 64)
    probe = FFmpegProbe(storage)

    with pytest.raises(ProcessingError) as excinfo:
        asyncio.run(probe.extract_metadata(bogus))
    assert excinfo.value.details["step"] == "metadata"

    with pytest.raises(ProcessingError):
        asyncio.run(probe.extract_thumbnail(bogus))
    assert list(storage.list("thumbnails")) == []
