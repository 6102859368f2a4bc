from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from video_engine.domain.models import MediaMetadata

FFPROBE_COMMAND = (
    "ffprobe",
    "-v",
    "error",
    "-show_format",
    "-show_streams",
    "-print_format",
    "json",
)


def parse_ffprobe_json(raw: Dict[str, Any]) -> MediaMetadata:
    """Reduce ffprobe JSON to the technical metadata tracked on an asset.

    Args:
        raw: The raw ffprobe JSON (``-show_format -show_streams``).

    Returns:
        The metadata of the selected video stream and container.
    """
    format_info = raw.get("format") or {}
    video_streams = [stream for stream in raw.get("streams") or [] if _is_video(stream)]

    duration_s = _parse_duration(format_info.get("duration"))
    width = height = None
    codec = None
    frame_rate = None
    if video_streams:
        selected = _select_video_stream(video_streams)
        width = _int_or_none(selected.get("width"))
        height = _int_or_none(selected.get("height"))
        codec = selected.get("codec_name") or None
        frame_rate = _frame_rate(selected.get("avg_frame_rate")) or _frame_rate(selected.get("r_frame_rate"))
        if duration_s is None:
            duration_s = _parse_duration(selected.get("duration"))

    return MediaMetadata(
        duration_seconds=duration_s,
        width=width,
        height=height,
        codec=codec,
        container=format_info.get("format_name") or None,
        frame_rate_fps=frame_rate,
        bitrate_kbps=_parse_bitrate_kbps(format_info.get("bit_rate")),
    )


def _is_video(stream: Dict[str, Any]) -> bool:
    if stream.get("codec_type") != "video":
        return False
    # Cover art is reported as a single-frame video stream.
    disposition = stream.get("disposition") or {}
    return not disposition.get("attached_pic")


def _parse_duration(raw_value: Any) -> Optional[float]:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


def _parse_bitrate_kbps(raw_value: Any) -> Optional[int]:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        return int(round(int(raw_value) / 1000))
    except (TypeError, ValueError):
        return None


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _frame_rate(value: Any) -> Optional[float]:
    """Convert ffprobe's fractional frame rate string (e.g. '30000/1001') into a float."""
    if not value or value in {"0/0", "N/A"}:
        return None
    try:
        numerator, denominator = _split_rational(str(value))
    except ValueError:
        return None
    if denominator == 0:
        return None
    return round(numerator / denominator, 3)


def _split_rational(value: str) -> Tuple[float, float]:
    if "/" not in value:
        return float(value), 1.0
    numerator, denominator = value.split("/", 1)
    return float(numerator), float(denominator)


def _disposition_default(disposition: Any) -> Optional[bool]:
    if not isinstance(disposition, dict):
        return None
    default_value = disposition.get("default")
    if default_value is None:
        return None
    return bool(default_value)


def _select_video_stream(streams: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Prefer the default-disposition stream, otherwise the highest resolution."""
    default_streams = [stream for stream in streams if _disposition_default(stream.get("disposition")) is True]
    if default_streams:
        return default_streams[0]

    def score(item: Dict[str, Any]) -> int:
        return (_int_or_none(item.get("width")) or 0) * (_int_or_none(item.get("height")) or 0)

    return max(streams, key=score)


def ffprobe_command(target: str) -> List[str]:
    return [*FFPROBE_COMMAND, target]


def video_streams(raw: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    return (stream for stream in raw.get("streams") or [] if _is_video(stream))


__all__ = ["parse_ffprobe_json", "ffprobe_command", "video_streams"]
