from __future__ import annotations

import os
import re
from typing import List, NamedTuple, Optional

from pydantic import BaseModel

from storyshort.config import Settings
from storyshort.render.concat import to_forward_slash_path

_OPTION_SPECIALS = re.compile(r"[\\':]")
_GRAPH_SPECIALS = re.compile(r"[\\'\[\],;]")

SUBTITLE_FORCE_STYLE = (
    "FontSize=20,Outline=1,Shadow=0,BorderStyle=1,BackColour=&H00000000,"
    "PrimaryColour=&H00FFFFFF,Alignment=2,MarginV=80,MarginL=20,MarginR=20,WrapStyle=2"
)
COLOR_GRADE = "eq=contrast=1.08:saturation=1.03:brightness=0.01"
VIGNETTE = "vignette=PI/4"
GRAIN = "noise=c0s=0.1:allf=t"
# extra pixels around the zoompan frame so the shaking crop never runs out of picture
SHAKE_MARGIN = 8


class MotionStyle(NamedTuple):
    zoom_step: float
    zoom_wobble: str
    zoom_cap: float
    pan_x: str
    pan_y: str
    shake_x: str
    shake_y: str


MOTION_STYLES = (
    MotionStyle(
        0.0018, "sin(ot*0.8)*0.0005", 1.25,
        "sin(ot*0.4)*15+cos(ot*0.2)*8", "cos(ot*0.3)*12+sin(ot*0.1)*6",
        "sin(t*1.8)*2+cos(t*2.2)*1.5", "cos(t*1.5)*1.8+sin(t*2.8)*1.2",
    ),
    MotionStyle(
        0.002, "sin(ot*1.2)*0.0008", 1.3,
        "sin(ot*0.6)*18+cos(ot*0.4)*10", "cos(ot*0.5)*14+sin(ot*0.3)*8",
        "sin(t*2.1)*2.5+cos(t*1.9)*1.8", "cos(t*1.7)*2.2+sin(t*2.5)*1.5",
    ),
    MotionStyle(
        0.0015, "sin(ot*0.6)*0.0003", 1.2,
        "sin(ot*0.3)*12+cos(ot*0.1)*6", "cos(ot*0.2)*10+sin(ot*0.05)*4",
        "sin(t*1.5)*1.8+cos(t*2.0)*1.2", "cos(t*1.3)*1.5+sin(t*2.3)*1.0",
    ),
    MotionStyle(
        0.0022, "sin(ot*1.0)*0.0006", 1.28,
        "sin(ot*0.5)*20+cos(ot*0.3)*12", "cos(ot*0.4)*16+sin(ot*0.2)*10",
        "sin(t*2.3)*2.8+cos(t*1.8)*2.0", "cos(t*1.9)*2.5+sin(t*2.7)*1.8",
    ),
)


class RenderProfile(BaseModel):
    ffmpeg_binary: str = "ffmpeg"
    width: int = 1080
    height: int = 1920
    fps: int = 30
    crf: int = 23
    preset: str = "fast"
    audio_bitrate: str = "128k"
    subtitle_style: str = SUBTITLE_FORCE_STYLE

    @classmethod
    def from_settings(cls, settings: Settings) -> "RenderProfile":
        return cls(
            ffmpeg_binary=settings.ffmpeg_binary,
            width=settings.video_width,
            height=settings.video_height,
            fps=settings.video_fps,
            crf=settings.video_crf,
            preset=settings.video_preset,
            audio_bitrate=settings.audio_bitrate,
        )


def escape_filter_path(path: str | os.PathLike[str]) -> str:
    """Escape a path for use as an unquoted filter option value.

    The value is unescaped twice: once by the filtergraph parser and once by the
    filter's own option parser, so the option-level escape is escaped again for
    the graph.
    """
    normalized = to_forward_slash_path(path)
    option_value = _OPTION_SPECIALS.sub(r"\\\g<0>", normalized)
    return _GRAPH_SPECIALS.sub(r"\\\g<0>", option_value)


def motion_style(scene_index_for_variety: int) -> MotionStyle:
    return MOTION_STYLES[scene_index_for_variety % len(MOTION_STYLES)]


def motion_filters(style: MotionStyle, profile: RenderProfile) -> List[str]:
    padded_w = profile.width + 2 * SHAKE_MARGIN
    padded_h = profile.height + 2 * SHAKE_MARGIN
    zoom = f"min(pzoom+{style.zoom_step}+{style.zoom_wobble},{style.zoom_cap})"
    pan_x = f"iw/2-(iw/zoom/2)+{style.pan_x}"
    pan_y = f"ih/2-(ih/zoom/2)+{style.pan_y}"
    return [
        f"zoompan=z='{zoom}':d=1:x='{pan_x}':y='{pan_y}':s={padded_w}x{padded_h}:fps={profile.fps}",
        f"crop={profile.width}:{profile.height}"
        f":x='{SHAKE_MARGIN}+{style.shake_x}':y='{SHAKE_MARGIN}+{style.shake_y}'",
    ]


def subtitle_filter(captions_path: str | os.PathLike[str], force_style: str = SUBTITLE_FORCE_STYLE) -> str:
    return f"subtitles=filename={escape_filter_path(captions_path)}:force_style='{force_style}'"


def build_filter_chain(
    scene_index_for_variety: int,
    captions_path: Optional[str | os.PathLike[str]] = None,
    profile: Optional[RenderProfile] = None,
) -> str:
    profile = profile or RenderProfile()
    filters = [
        f"scale={profile.width}:{profile.height}:force_original_aspect_ratio=decrease",
        f"pad={profile.width}:{profile.height}:(ow-iw)/2:(oh-ih)/2:color=black",
        "setsar=1",
        f"fps={profile.fps}",
        *motion_filters(motion_style(scene_index_for_variety), profile),
        COLOR_GRADE,
        VIGNETTE,
        GRAIN,
        "format=yuv420p",
    ]
    if captions_path is not None:
        filters.append(subtitle_filter(captions_path, profile.subtitle_style))
    return ",".join(filters)


def build_compositor_command(
    manifest_path: str | os.PathLike[str],
    audio_path: str | os.PathLike[str],
    captions_path: Optional[str | os.PathLike[str]],
    output_path: str | os.PathLike[str],
    scene_index_for_variety: int = 0,
    profile: Optional[RenderProfile] = None,
) -> List[str]:
    """Full argument list for one compositor run.

    Pass ``captions_path=None`` to build the fallback command without the subtitle burn.
    """
    profile = profile or RenderProfile()
    return [
        profile.ffmpeg_binary,
        "-y",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        to_forward_slash_path(manifest_path),
        "-i",
        to_forward_slash_path(audio_path),
        "-vf",
        build_filter_chain(scene_index_for_variety, captions_path, profile),
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c:v",
        "libx264",
        "-preset",
        profile.preset,
        "-crf",
        str(profile.crf),
        "-c:a",
        "aac",
        "-b:a",
        profile.audio_bitrate,
        "-shortest",
        "-movflags",
        "+faststart",
        to_forward_slash_path(output_path),
    ]


def has_subtitle_filter(args: List[str]) -> bool:
    return any("subtitles=" in arg for arg in args)
