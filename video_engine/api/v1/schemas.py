from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from video_engine.domain.models import LogEntry, VideoAsset


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: Optional[str] = None


class OutputFileResponse(BaseModel):
    name: str = Field(..., json_schema_extra={"example": "clip_proxy.mp4"})
    uri: str = Field(..., json_schema_extra={"example": "s3://media-bucket/proxy/clip_proxy.mp4"})


class VideoResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str = Field(description="ingested | processing | converting | ready | error")
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    source_ref: str
    thumbnail_ref: Optional[str] = None
    duration_seconds: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None
    output_profile: Optional[str] = None
    job_id: Optional[str] = None
    output_files: List[OutputFileResponse] = Field(default_factory=list)
    progress_percent: Optional[float] = None
    error_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_asset(cls, asset: VideoAsset) -> "VideoResponse":
        return cls(
            id=asset.id,
            title=asset.title,
            description=asset.description,
            status=asset.status.value,
            original_filename=asset.original_filename,
            mime_type=asset.mime_type,
            size_bytes=asset.size_bytes,
            source_ref=asset.source_ref,
            thumbnail_ref=asset.thumbnail_ref,
            duration_seconds=asset.duration_seconds,
            width=asset.width,
            height=asset.height,
            codec=asset.codec,
            output_profile=asset.output_profile,
            job_id=asset.job_id,
            output_files=[OutputFileResponse(**item.as_dict()) for item in asset.output_files],
            progress_percent=asset.progress_percent,
            error_reason=asset.error_reason,
            created_at=asset.created_at,
            updated_at=asset.updated_at,
        )


class VideoListResponse(BaseModel):
    items: List[VideoResponse]
    count: int


class ProxyResponse(BaseModel):
    asset_id: str
    proxy: OutputFileResponse
    outputs: List[OutputFileResponse]


class LogEntryResponse(BaseModel):
    timestamp: datetime
    level: str
    message: str
    asset_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "LogEntryResponse":
        return cls(**entry.as_dict())


class LogListResponse(BaseModel):
    items: List[LogEntryResponse]
    count: int

    @classmethod
    def from_entries(cls, entries: List[LogEntry]) -> "LogListResponse":
        items = [LogEntryResponse.from_entry(entry) for entry in entries]
        return cls(items=items, count=len(items))


class ErrorPayload(BaseModel):
    kind: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class ErrorResponse(BaseModel):
    success: bool = False
    timestamp: datetime
    path: str
    error: ErrorPayload


__all__ = [
    "HealthResponse",
    "OutputFileResponse",
    "VideoResponse",
    "VideoListResponse",
    "ProxyResponse",
    "LogEntryResponse",
    "LogListResponse",
    "ErrorPayload",
    "ErrorResponse",
]
