"""Media probing: ffprobe metadata and ffmpeg thumbnails."""

from .probe import FFmpegProbe, MediaProbe

__all__ = ["FFmpegProbe", "MediaProbe"]
