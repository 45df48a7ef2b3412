from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class VideoJobStatus(str, Enum):
    CREATED = "created"
    SCRIPT_GENERATING = "script_generating"
    SCRIPT_GENERATED = "script_generated"
    STORYBOARD_GENERATING = "storyboard_generating"
    STORYBOARD_GENERATED = "storyboard_generated"
    STORYBOARD_FAILED = "storyboard_failed"
    ASSETS_GENERATING = "assets_generating"
    ASSETS_GENERATED = "assets_generated"
    ASSETS_FAILED = "assets_failed"
    RENDERING = "rendering"
    COMPLETED = "completed"
    RENDER_FAILED = "render_failed"
    CANCELLED = "cancelled"

    @property
    def is_failure(self) -> bool:
        return self.value.endswith("_failed")

    @property
    def is_terminal(self) -> bool:
        return self in (VideoJobStatus.COMPLETED, VideoJobStatus.CANCELLED) or self.is_failure


class PlaceholderReason(str, Enum):
    CONTENT_POLICY_VIOLATION = "content_policy_violation"
    QUOTA_EXCEEDED = "QuotaExceeded"
    INVALID_CREDENTIALS = "invalid_credentials"
    PROVIDER_ERROR = "provider_error"
    INVALID_INPUT = "invalid_input"
    NOT_ATTEMPTED = "not_attempted"


class Scene(BaseModel):
    index: int
    narration_text: str
    image_prompt: str
    image_url: Optional[str] = None
    is_placeholder: bool = False
    placeholder_reason: Optional[PlaceholderReason] = None
    duration_seconds: Optional[float] = None


class StoryboardScene(BaseModel):
    """Scene description as returned by the storyboard capability."""

    narration_text: str
    image_prompt: str


class CaptionSegment(BaseModel):
    start_seconds: float
    end_seconds: float
    text: str


class SpeechResult(BaseModel):
    audio: bytes
    duration_seconds: Optional[float] = None


class VideoJob(BaseModel):
    id: UUID
    status: VideoJobStatus = VideoJobStatus.CREATED
    input_text: str
    script: Optional[str] = None
    storyboard: Optional[List[Scene]] = None
    audio_url: Optional[str] = None
    captions_url: Optional[str] = None
    captions_source: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    total_duration: Optional[float] = None
    final_video_url: Optional[str] = None
    captions_burned: Optional[bool] = None
    error_message: Optional[str] = None
    upload_progress_percent: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ProgressSnapshot(BaseModel):
    job_id: UUID
    status: Optional[VideoJobStatus] = None
    percentage: int
    message: str
    final_video_url: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return bool(self.status and self.status.is_terminal)
