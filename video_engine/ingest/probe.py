from __future__ import annotations

import asyncio
import json
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict
from uuid import uuid4

from video_engine.core.errors import ProcessingError
from video_engine.core.logging import get_logger
from video_engine.core.storage import Storage
from video_engine.domain.models import MediaMetadata

from .ffprobe_parser import ffprobe_command, parse_ffprobe_json, video_streams
from .thumbnails import ThumbnailError, render_thumbnail


class MediaProbe(ABC):
    """Derives a thumbnail and technical metadata from a local media file."""

    @abstractmethod
    async def extract_thumbnail(self, path: Path) -> str:
        """Return the storage key of a freshly written thumbnail."""

    @abstractmethod
    async def extract_metadata(self, path: Path) -> MediaMetadata: ...


class FFmpegProbe(MediaProbe):
    def __init__(self, storage: Storage, *, thumbnail_prefix: str = "thumbnails"):
        self.storage = storage
        self.thumbnail_prefix = thumbnail_prefix
        self.logger = get_logger(component="ffmpeg_probe")

    async def extract_thumbnail(self, path: Path) -> str:
        key = f"{self.thumbnail_prefix}/{uuid4().hex}.jpg"
        target = self.storage.path_for(key)
        try:
            width, height = await asyncio.to_thread(render_thumbnail, str(path), target)
        except (ThumbnailError, FileNotFoundError) as exc:
            raise ProcessingError(
                f"Failed to generate thumbnail: {exc}",
                details={"step": "thumbnail", "path": str(path)},
            ) from exc
        self.logger.info("thumbnail_extracted", key=key, width=width, height=height)
        return key

    async def extract_metadata(self, path: Path) -> MediaMetadata:
        raw = await asyncio.to_thread(self._run_ffprobe, path)
        if not any(True for _ in video_streams(raw)):
            raise ProcessingError(
                "No video stream found",
                details={"step": "metadata", "path": str(path)},
            )
        metadata = parse_ffprobe_json(raw)
        self.logger.info(
            "metadata_extracted",
            path=str(path),
            duration_s=metadata.duration_seconds,
            width=metadata.width,
            height=metadata.height,
            codec=metadata.codec,
        )
        return metadata

    @staticmethod
    def _run_ffprobe(target: Path) -> Dict[str, Any]:
        try:
            proc = subprocess.run(
                ffprobe_command(str(target)),
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            raise ProcessingError(
                f"Failed to extract video metadata: {(exc.stderr or '').strip() or exc.returncode}",
                details={"step": "metadata", "path": str(target)},
            ) from exc
        except FileNotFoundError as exc:
            raise ProcessingError(
                "ffprobe is not installed",
                details={"step": "metadata"},
            ) from exc
        try:
            return json.loads(proc.stdout)
        except json.JSONDecodeError as exc:
            raise ProcessingError(
                "ffprobe returned unreadable output",
                details={"step": "metadata", "path": str(target)},
            ) from exc


__all__ = ["MediaProbe", "FFmpegProbe"]
