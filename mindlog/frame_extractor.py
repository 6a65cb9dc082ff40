from __future__ import annotations

import base64
import binascii
import json
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import List, Optional

from .errors import FrameExtractionError

DEFAULT_DURATION_SECONDS = 60.0
FFMPEG_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class FrameExtractSettings:
    num_frames: int = 5
    scale_width: int = 1280
    jpeg_quality: int = 3


def extract_frames(video_base64: str, log, settings: FrameExtractSettings = FrameExtractSettings()) -> List[str]:
    """Sample evenly spaced JPEG frames from a base64 video; returns base64 frames.

    Needs ``ffmpeg`` on PATH (``ffprobe`` is optional and only used for the duration).
    """
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg is None:
        raise FrameExtractionError("ffmpeg not found on PATH")
    try:
        video_data = base64.b64decode(video_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FrameExtractionError(f"Invalid base64 video: {exc}") from exc

    with TemporaryDirectory(prefix="mindlog-frames-") as tmp:
        tmp_dir = Path(tmp)
        video_path = tmp_dir / "input.mp4"
        video_path.write_bytes(video_data)
        duration = probe_duration(video_path, log)

        frames: List[str] = []
        for index in range(settings.num_frames):
            offset = duration * (index + 0.5) / settings.num_frames
            frame_path = tmp_dir / f"frame_{index:03d}.jpg"
            command = [
                ffmpeg,
                "-v", "quiet",
                "-ss", f"{offset:.2f}",
                "-i", str(video_path),
                "-vframes", "1",
                "-vf", f"scale={settings.scale_width}:-1",
                "-q:v", str(settings.jpeg_quality),
                "-y", str(frame_path),
            ]
            try:
                result = subprocess.run(command, capture_output=True, timeout=FFMPEG_TIMEOUT_SECONDS)
            except (OSError, subprocess.TimeoutExpired) as exc:
                log.warning("ffmpeg failed on frame %s: %s", index, exc)
                continue
            if result.returncode != 0 or not frame_path.exists():
                log.warning("ffmpeg could not extract frame %s (exit=%s)", index, result.returncode)
                continue
            frames.append(base64.b64encode(frame_path.read_bytes()).decode("ascii"))

    if not frames:
        raise FrameExtractionError("No frames could be extracted")
    log.info("Extracted %s/%s frames from video", len(frames), settings.num_frames)
    return frames


def probe_duration(video_path: Path, log) -> float:
    ffprobe = shutil.which("ffprobe")
    if ffprobe is None:
        return DEFAULT_DURATION_SECONDS
    try:
        result = subprocess.run(
            [ffprobe, "-v", "quiet", "-print_format", "json", "-show_format", str(video_path)],
            capture_output=True,
            timeout=FFMPEG_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        log.warning("ffprobe failed: %s", exc)
        return DEFAULT_DURATION_SECONDS
    duration = _parse_duration(result.stdout) if result.returncode == 0 else None
    if duration is None:
        log.warning("Video duration unknown; assuming %.0fs", DEFAULT_DURATION_SECONDS)
        return DEFAULT_DURATION_SECONDS
    return duration


def _parse_duration(raw: bytes) -> Optional[float]:
    try:
        value = float(json.loads(raw or b"{}").get("format", {}).get("duration"))
    except (TypeError, ValueError, AttributeError):
        return None
    return value if value > 0 else None
