"""Domain entities shared by the services and the API."""

from video_engine.domain.models import (
    TERMINAL_STATUSES,
    FrameCounters,
    IngestRequest,
    LogEntry,
    MediaMetadata,
    OutputFile,
    RemoteJobStatus,
    RemoteState,
    TransitionEvent,
    UploadedFile,
    VideoAsset,
    VideoStatus,
)

__all__ = [
    "TERMINAL_STATUSES",
    "FrameCounters",
    "IngestRequest",
    "LogEntry",
    "MediaMetadata",
    "OutputFile",
    "RemoteJobStatus",
    "RemoteState",
    "TransitionEvent",
    "UploadedFile",
    "VideoAsset",
    "VideoStatus",
]
