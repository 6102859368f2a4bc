from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter

from video_engine.api import deps
from video_engine.core.errors import ValidationError

from . import schemas


router = APIRouter(prefix="/logs", tags=["logs"])


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@router.get("", response_model=schemas.LogListResponse, summary="Event log entries in a time range")
async def logs_between(
    engine: deps.EngineDependency,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> schemas.LogListResponse:
    lower = _aware(start) if start else datetime.min.replace(tzinfo=timezone.utc)
    upper = _aware(end) if end else datetime.now(timezone.utc)
    if lower > upper:
        raise ValidationError("start must not be after end", field="start")
    return schemas.LogListResponse.from_entries(engine.logs_between(lower, upper))


__all__ = ["router"]
