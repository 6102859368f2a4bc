from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, Tuple

RemoteState = Literal["queued", "progressing", "complete", "error"]


class VideoStatus(str, enum.Enum):
    ingested = "ingested"
    processing = "processing"
    converting = "converting"
    ready = "ready"
    error = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({VideoStatus.ready, VideoStatus.error})


class TransitionEvent(str, enum.Enum):
    submitted = "submitted"
    progressed = "progressed"
    completed = "completed"
    failed = "failed"


@dataclass(frozen=True, slots=True)
class OutputFile:
    name: str
    uri: str

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "uri": self.uri}


@dataclass(frozen=True, slots=True)
class VideoAsset:
    """Snapshot of one uploaded media file and where it is in its lifecycle."""

    id: str
    title: str
    status: VideoStatus
    source_ref: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    thumbnail_ref: Optional[str] = None
    duration_seconds: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None
    output_profile: Optional[str] = None
    job_id: Optional[str] = None
    output_files: Tuple[OutputFile, ...] = ()
    progress_percent: Optional[float] = None
    error_reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str
    asset_id: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "asset_id": self.asset_id,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class MediaMetadata:
    duration_seconds: Optional[float]
    width: Optional[int]
    height: Optional[int]
    codec: Optional[str]
    container: Optional[str] = None
    frame_rate_fps: Optional[float] = None
    bitrate_kbps: Optional[int] = None


@dataclass(frozen=True, slots=True)
class UploadedFile:
    """An upload already spooled to local disk by the transport layer."""

    path: Path
    filename: str
    content_type: Optional[str]
    size_bytes: int


@dataclass(frozen=True, slots=True)
class IngestRequest:
    title: Optional[str] = None
    description: Optional[str] = None
    output_profile: Optional[str] = None


@dataclass(frozen=True, slots=True)
class FrameCounters:
    processed: int
    total: int


@dataclass(frozen=True, slots=True)
class RemoteJobStatus:
    remote_state: RemoteState
    progress_percent: Optional[float] = None
    frame_counters: Optional[FrameCounters] = None
    reason: Optional[str] = None


__all__ = [
    "RemoteState",
    "VideoStatus",
    "TERMINAL_STATUSES",
    "TransitionEvent",
    "OutputFile",
    "VideoAsset",
    "LogEntry",
    "MediaMetadata",
    "UploadedFile",
    "IngestRequest",
    "FrameCounters",
    "RemoteJobStatus",
]
