from __future__ import annotations

from typing import List, Optional

from storyshort.errors import InvalidInputError

MIN_SCENE_SECONDS = 1.5
DEFAULT_SCENE_SECONDS = 3.0


def compute_durations(
    scene_count: int,
    total_audio_seconds: Optional[float],
    min_seconds: float = MIN_SCENE_SECONDS,
    default_seconds: float = DEFAULT_SCENE_SECONDS,
) -> List[float]:
    """Per-scene on-screen durations.

    With a known narration length every scene gets an equal share, floored at
    ``min_seconds``. Without one, every scene gets ``default_seconds``. The sum is
    allowed to drift from the audio length; the concat manifest holds the last
    frame so playback never ends before the narration.
    """
    if scene_count <= 0:
        raise InvalidInputError("a storyboard needs at least one scene to be timed")
    if total_audio_seconds is None:
        return [max(min_seconds, default_seconds)] * scene_count
    if total_audio_seconds < 0:
        raise InvalidInputError(f"audio duration cannot be negative: {total_audio_seconds}")
    per_scene = max(min_seconds, total_audio_seconds / scene_count)
    return [per_scene] * scene_count


def durations_disagree(current: List[Optional[float]], expected: List[float], tolerance: float) -> bool:
    if len(current) != len(expected):
        return True
    return any(value is None or abs(value - target) > tolerance for value, target in zip(current, expected))
