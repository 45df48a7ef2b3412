from __future__ import annotations

import io
import logging
import os
import subprocess
import tempfile
from functools import lru_cache

from moviepy import AudioFileClip
from PIL import Image

log = logging.getLogger(__name__)


def measure_audio_duration(path: str) -> float | None:
    """Return the duration in seconds of an audio file, or None if unreadable."""
    try:
        clip = AudioFileClip(path)
    except Exception:
        log.warning("audio duration probe failed", extra={"path": path}, exc_info=True)
        return None
    try:
        return float(clip.duration) if clip.duration else None
    finally:
        clip.close()


def probe_audio_duration(path: str, ffprobe_binary: str = "ffprobe", timeout: float = 30.0) -> float | None:
    """Ask ffprobe for the container duration, or None if it cannot tell."""
    cmd = [
        ffprobe_binary,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired):
        log.warning("ffprobe duration probe failed", extra={"path": path}, exc_info=True)
        return None
    try:
        value = float(result.stdout.strip())
    except ValueError:
        log.warning("ffprobe reported no duration", extra={"path": path, "stderr": result.stderr})
        return None
    return value if value > 0 else None


def measure_audio_bytes(audio: bytes | None, suffix: str = ".mp3") -> float | None:
    if not audio:
        return None
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
        tmp.write(audio)
        tmp_path = tmp.name
    try:
        return measure_audio_duration(tmp_path) or probe_audio_duration(tmp_path)
    finally:
        os.remove(tmp_path)


@lru_cache(maxsize=4)
def placeholder_png(width: int = 1080, height: int = 1920, color: tuple[int, int, int] = (238, 238, 238)) -> bytes:
    image = Image.new("RGB", (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
