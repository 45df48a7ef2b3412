from __future__ import annotations

import re
from typing import Iterable, List, Optional

from storyshort.models.domain import CaptionSegment
from storyshort.services.script_text import split_sentences

MAX_LINE_CHARS = 42
WORDS_PER_MINUTE = 150
MIN_ESTIMATED_SECONDS = 5.0

_TIMING_RE = re.compile(r"(\d{2}:\d{2}:\d{2}[,.]\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2}[,.]\d{3})")
_TIMESTAMP_RE = re.compile(r"(\d{2}):(\d{2}):(\d{2})[,.](\d{3})")


def format_timestamp(seconds: float) -> str:
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours = total_ms // 3_600_000
    minutes = (total_ms % 3_600_000) // 60_000
    secs = (total_ms % 60_000) // 1000
    millis = total_ms % 1000
    return f"{hours:02}:{minutes:02}:{secs:02},{millis:03}"


def parse_timestamp(value: str) -> float:
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        return 0.0
    hours, minutes, seconds, millis = map(int, match.groups())
    return hours * 3600 + minutes * 60 + seconds + millis / 1000.0


def wrap_caption(text: str, max_chars: int = MAX_LINE_CHARS) -> str:
    """Wrap cue text into at most two lines of roughly ``max_chars``."""
    lines: List[str] = []
    current: List[str] = []
    for word in text.split():
        candidate = " ".join(current + [word])
        if len(candidate) > max_chars and current:
            lines.append(" ".join(current))
            current = [word]
        else:
            current.append(word)
    if current:
        lines.append(" ".join(current))
    if len(lines) > 2:
        joined = " ".join(lines)
        middle = joined.rfind(" ", 0, len(joined) // 2 + 1)
        if middle <= 0:
            middle = len(joined) // 2
        return f"{joined[:middle].strip()}\n{joined[middle:].strip()}"
    return "\n".join(lines)


def format_srt(segments: Iterable[CaptionSegment]) -> str:
    blocks = []
    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        blocks.append(
            f"{len(blocks) + 1}\n"
            f"{format_timestamp(segment.start_seconds)} --> {format_timestamp(segment.end_seconds)}\n"
            f"{text}\n"
        )
    return "\n".join(blocks)


def parse_srt(text: str) -> List[CaptionSegment]:
    entries: List[CaptionSegment] = []
    for block in re.split(r"\n\s*\n", (text or "").replace("\r\n", "\n").strip()):
        lines = [line.strip() for line in block.splitlines() if line.strip()]
        timing_index = next((i for i, line in enumerate(lines) if _TIMING_RE.search(line)), None)
        if timing_index is None:
            continue
        match = _TIMING_RE.search(lines[timing_index])
        content = "\n".join(lines[timing_index + 1 :])
        entries.append(
            CaptionSegment(
                start_seconds=parse_timestamp(match.group(1)),
                end_seconds=parse_timestamp(match.group(2)),
                text=content,
            )
        )
    return entries


def estimate_duration(text: str) -> float:
    words = len((text or "").split())
    return max(MIN_ESTIMATED_SECONDS, words / WORDS_PER_MINUTE * 60.0)


def naive_captions(script: str, total_duration: Optional[float]) -> List[CaptionSegment]:
    """Split the script into sentences and give each an equal slice of the timeline.

    Used when transcription is unavailable; the last cue always ends at
    ``total_duration``.
    """
    total = total_duration if total_duration and total_duration > 0 else estimate_duration(script)
    sentences = split_sentences(script)
    if not sentences:
        return [CaptionSegment(start_seconds=0.0, end_seconds=total, text=(script or "").strip() or " ")]
    slice_seconds = total / len(sentences)
    segments: List[CaptionSegment] = []
    for idx, sentence in enumerate(sentences):
        start = idx * slice_seconds
        end = total if idx == len(sentences) - 1 else (idx + 1) * slice_seconds
        segments.append(CaptionSegment(start_seconds=start, end_seconds=end, text=wrap_caption(sentence)))
    return segments
