from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from video_engine.core.config import Settings, get_settings
from video_engine.services.engine import VideoEngine


def get_engine(request: Request) -> VideoEngine:
    engine = getattr(request.app.state, "video_engine", None)
    if not isinstance(engine, VideoEngine):  # pragma: no cover - lifespan always sets it
        raise RuntimeError("video_engine_not_configured")
    return engine


def get_app_settings() -> Settings:
    return get_settings()


EngineDependency = Annotated[VideoEngine, Depends(get_engine)]
SettingsDependency = Annotated[Settings, Depends(get_app_settings)]


__all__ = [
    "get_engine",
    "get_app_settings",
    "EngineDependency",
    "SettingsDependency",
]
