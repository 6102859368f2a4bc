import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from video_engine.core.config import get_settings
from video_engine.core.db import Base, create_engine, create_schema
from video_engine.core.storage import get_storage
from video_engine.main import create_app
from tests.fakes import FakeProbe, FakeProvider

_AWS_VARS = (
    "AWS_REGION",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_S3_BUCKET",
    "MEDIA_CONVERT_TEMPLATES",
    "VIDEO_ENGINE_AWS_REGION",
    "VIDEO_ENGINE_AWS_ACCESS_KEY_ID",
    "VIDEO_ENGINE_AWS_SECRET_ACCESS_KEY",
    "VIDEO_ENGINE_AWS_S3_BUCKET",
    "VIDEO_ENGINE_OUTPUT_PROFILES",
    "VIDEO_ENGINE_MEDIACONVERT_ROLE_ARN",
)


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default environment bootstrap fixture for tests that manage their own settings",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    for name in _AWS_VARS:
        monkeypatch.delenv(name, raising=False)
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return
    db_path = tmp_path / "video_engine_test.db"
    storage_root = tmp_path / "media"

    monkeypatch.setenv("VIDEO_ENGINE_ENV", "test")
    monkeypatch.setenv("VIDEO_ENGINE_LOG_LEVEL", "debug")
    monkeypatch.setenv("VIDEO_ENGINE_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("VIDEO_ENGINE_STORAGE_ROOT", str(storage_root))
    monkeypatch.setenv("VIDEO_ENGINE_POLL_INTERVAL_S", "0")
    monkeypatch.setenv("VIDEO_ENGINE_RETRY_BASE_DELAY_S", "0")

    get_settings.cache_clear()
    settings = get_settings()

    async def _setup() -> None:
        engine = create_engine(settings)
        await create_schema(engine)
        await engine.dispose()

    asyncio.run(_setup())

    yield

    async def _teardown() -> None:
        engine = create_engine(settings)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


@pytest.fixture()
def settings(configure_environment):
    return get_settings()


@pytest.fixture()
def provider():
    return FakeProvider()


@pytest.fixture()
def client(configure_environment, provider):
    storage = get_storage(get_settings())
    app = create_app(provider=provider, probe=FakeProbe(storage), storage=storage)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def sample_video(tmp_path) -> Path:
    path = tmp_path / "uploads-in" / "clip.mp4"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 2048)
    return path


@pytest.fixture(scope="session")
def generated_video_file(tmp_path_factory) -> Path:
    """
    Generates a small, valid MP4 video file for testing in a temporary directory.
    """
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg is not installed")
    video_path = tmp_path_factory.mktemp("data") / "test_video.mp4"

    # Generate a 2-second video with a solid color
    command = [
        "ffmpeg",
        "-f", "lavfi",
        "-i", "color=c=black:s=640x360:r=30",
        "-t", "2",
        "-pix_fmt", "yuv420p",
        str(video_path)
    ]
    subprocess.run(command, check=True, capture_output=True)
    return video_path
