from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence, Tuple

import cv2  # type: ignore

THUMB_WIDTH = 320
# The first second usually skips black leader frames; very short clips fall back to frame zero.
DEFAULT_OFFSETS_S: Tuple[float, ...] = (1.0, 0.0)


class ThumbnailError(RuntimeError):
    """Raised when no usable frame could be extracted."""


def render_thumbnail(video_path: str, output_path: Path, offsets_s: Sequence[float] = DEFAULT_OFFSETS_S) -> Tuple[int, int]:
    """Grab a single scaled JPEG frame and return its (width, height)."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    last_error = "no offsets attempted"
    for offset in offsets_s:
        try:
            _extract_frame(video_path, offset, output_path)
            return _image_dimensions(output_path)
        except (subprocess.CalledProcessError, RuntimeError) as exc:
            last_error = _describe(exc)
            output_path.unlink(missing_ok=True)
    raise ThumbnailError(f"thumbnail extraction failed for {video_path}: {last_error}")


def _extract_frame(video_path: str, timestamp: float, output_path: Path) -> None:
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-ss",
        f"{max(timestamp, 0.0):.3f}",
        "-i",
        video_path,
        "-frames:v",
        "1",
        "-vf",
        f"scale={THUMB_WIDTH}:-2",
        "-q:v",
        "2",
        "-y",
        str(output_path),
    ]
    subprocess.run(command, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if not output_path.exists() or output_path.stat().st_size == 0:
        raise RuntimeError(f"ffmpeg produced no frame at {timestamp:.3f}s")


def _image_dimensions(image_path: Path) -> Tuple[int, int]:
    image = cv2.imread(str(image_path))
    if image is None:
        raise RuntimeError(f"Failed to read generated thumbnail at {image_path}")
    height, width = image.shape[:2]
    return width, height


def _describe(exc: Exception) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        stderr = exc.stderr.decode(errors="replace") if isinstance(exc.stderr, bytes) else (exc.stderr or "")
        return stderr.strip() or f"ffmpeg exited with {exc.returncode}"
    return str(exc)


__all__ = ["render_thumbnail", "ThumbnailError", "THUMB_WIDTH"]
