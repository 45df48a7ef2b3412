from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, field_validator

from .domain import ProgressSnapshot, VideoJob


class VideoCreateRequest(BaseModel):
    input_text: str = Field(..., max_length=5000)

    @field_validator("input_text")
    @classmethod
    def validate_input_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("input_text must not be empty")
        return value


class ScriptUpdateRequest(BaseModel):
    script: str

    @field_validator("script")
    @classmethod
    def validate_script(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("script must not be empty")
        return value


class VideoJobResponse(BaseModel):
    job: VideoJob


class VideoJobListResponse(BaseModel):
    items: List[VideoJob]


class ProgressResponse(BaseModel):
    progress: ProgressSnapshot
