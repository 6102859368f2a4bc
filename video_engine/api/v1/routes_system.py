from __future__ import annotations

from fastapi import APIRouter

from video_engine.api import deps

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(settings: deps.SettingsDependency) -> HealthResponse:
    return HealthResponse(version=settings.version)


__all__ = ["router"]
