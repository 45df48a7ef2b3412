from __future__ import annotations

import os
import posixpath
import re
from pathlib import PureWindowsPath
from typing import Sequence

from storyshort.errors import InvalidInputError

MANIFEST_HEADER = "ffconcat version 1.0"

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def to_forward_slash_path(path: str | os.PathLike[str]) -> str:
    """Absolute path with forward slashes, whatever the host separator is."""
    raw = os.fspath(path)
    if _DRIVE_RE.match(raw) or raw.startswith("\\\\"):
        return PureWindowsPath(raw).as_posix()
    normalized = raw.replace("\\", "/")
    if not posixpath.isabs(normalized):
        normalized = os.path.abspath(normalized).replace("\\", "/")
    return normalized


def _quote(path: str) -> str:
    return "'" + path.replace("'", "'\\''") + "'"


def build_concat_manifest(image_paths: Sequence[str | os.PathLike[str]], durations: Sequence[float]) -> str:
    """Build the concat-demuxer manifest for a still-image slideshow.

    One ``file``/``duration`` pair per scene, then the last file repeated without a
    duration so the demuxer honours the final hold. LF endings, trailing newline.
    """
    if not image_paths:
        raise InvalidInputError("manifest needs at least one image")
    if len(image_paths) != len(durations):
        raise InvalidInputError(
            f"manifest needs one duration per image: {len(image_paths)} images, {len(durations)} durations"
        )
    lines = [MANIFEST_HEADER]
    normalized = [to_forward_slash_path(path) for path in image_paths]
    for path, duration in zip(normalized, durations):
        if duration is None or duration <= 0:
            raise InvalidInputError(f"scene duration must be positive: {duration!r} for {path}")
        lines.append(f"file {_quote(path)}")
        lines.append(f"duration {duration:.3f}")
    lines.append(f"file {_quote(normalized[-1])}")
    return "\n".join(line.replace("\r", "") for line in lines) + "\n"
