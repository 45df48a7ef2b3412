from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import pytest

from storyshort.clients.s3_storage import S3StorageClient
from storyshort.config import Settings
from storyshort.errors import CompositorError, MediaError, ProviderError
from storyshort.models.domain import CaptionSegment, SpeechResult, StoryboardScene
from storyshort.render.command import has_subtitle_filter
from storyshort.services.asset_service import AssetOrchestrator
from storyshort.services.render_service import RenderOrchestrator
from storyshort.storage.repository import VideoJobRepository

SCRIPT = "A dog finds a friend. They play in the park. Home before the rain."


def make_scenes(count: int) -> List[StoryboardScene]:
    return [
        StoryboardScene(narration_text=f"Narration {i}.", image_prompt=f"prompt {i}")
        for i in range(1, count + 1)
    ]


class StubProvider:
    """In-memory MediaProvider; image failures are keyed by the raw scene prompt."""

    def __init__(
        self,
        scenes: Optional[List[StoryboardScene]] = None,
        image_failures: Optional[Dict[str, List[Optional[MediaError]]]] = None,
        fallback: bool = False,
        fallback_failures: Optional[Dict[str, MediaError]] = None,
        audio_seconds: Optional[float] = 12.0,
    ) -> None:
        self.scenes = scenes if scenes is not None else make_scenes(3)
        self.image_failures = image_failures or {}
        self.fallback = fallback
        self.fallback_failures = fallback_failures or {}
        self.audio_seconds = audio_seconds
        self.script_error: Optional[MediaError] = None
        self.storyboard_error: Optional[MediaError] = None
        self.speech_error: Optional[MediaError] = None
        self.transcribe_error: Optional[Exception] = None
        self.script_calls = 0
        self.storyboard_calls = 0
        self.speech_calls = 0
        self.image_prompts: List[str] = []
        self.fallback_prompts: List[str] = []

    def script(self, input_text: str) -> str:
        self.script_calls += 1
        if self.script_error:
            raise self.script_error
        return SCRIPT

    def storyboard(self, script: str) -> List[StoryboardScene]:
        self.storyboard_calls += 1
        if self.storyboard_error:
            raise self.storyboard_error
        return list(self.scenes)

    def _failure_for(self, prompt: str) -> Optional[MediaError]:
        for key, errors in self.image_failures.items():
            if prompt.endswith(key) and errors:
                return errors.pop(0) if len(errors) > 1 else errors[0]
        return None

    def image(self, prompt: str) -> bytes:
        self.image_prompts.append(prompt)
        error = self._failure_for(prompt)
        if error is not None:
            raise error
        return b"png:" + prompt.encode("utf-8")

    def has_fallback_image(self) -> bool:
        return self.fallback

    def fallback_image(self, prompt: str) -> bytes:
        self.fallback_prompts.append(prompt)
        for key, error in self.fallback_failures.items():
            if prompt.endswith(key):
                raise error
        return b"fallback-png"

    def speech(self, text: str) -> SpeechResult:
        self.speech_calls += 1
        if self.speech_error:
            raise self.speech_error
        return SpeechResult(audio=b"ID3-narration", duration_seconds=self.audio_seconds)

    def transcribe(self, audio: bytes) -> List[CaptionSegment]:
        if self.transcribe_error:
            raise self.transcribe_error
        return [
            CaptionSegment(start_seconds=0.0, end_seconds=4.0, text="A dog finds a friend."),
            CaptionSegment(start_seconds=4.0, end_seconds=12.0, text="They play in the park."),
        ]


class FakeCompositor:
    def __init__(self, fail_with_subtitles: bool = False, fail_always: bool = False, stderr: str = "boom") -> None:
        self.fail_with_subtitles = fail_with_subtitles
        self.fail_always = fail_always
        self.stderr = stderr
        self.calls: List[List[str]] = []
        self.manifests: List[str] = []

    def run(self, args: Sequence[str]) -> None:
        args = list(args)
        self.calls.append(args)
        manifest = args[args.index("-i") + 1]
        with open(manifest, encoding="utf-8") as f:
            self.manifests.append(f.read())
        if self.fail_always or (self.fail_with_subtitles and has_subtitle_filter(args)):
            raise CompositorError(1, args, self.stderr)
        with open(args[-1], "wb") as f:
            f.write(b"fake-mp4")


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, run_stages_inline=True, fallback_image_model="", whisper_local_model="")


@pytest.fixture
def repo() -> VideoJobRepository:
    return VideoJobRepository()


@pytest.fixture
def storage() -> S3StorageClient:
    return S3StorageClient(bucket="storyshort-test", access_key=None, secret_key=None)


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def compositor() -> FakeCompositor:
    return FakeCompositor()


@pytest.fixture
def assets(repo, provider, storage, settings) -> AssetOrchestrator:
    return AssetOrchestrator(repo, provider, storage, settings, sleep=lambda _: None, retry_delay=0)


@pytest.fixture
def renderer(repo, storage, compositor, settings) -> RenderOrchestrator:
    return RenderOrchestrator(repo, storage, compositor, settings, measure_audio=lambda _: 12.0)


@pytest.fixture
def storyboarded_job(repo, assets):
    """A job that has gone through the script and storyboard stages."""
    job_id = repo.create(input_text="A dog finds a friend")
    assets.generate_script(job_id)
    assets.generate_storyboard(job_id)
    return job_id


def transient(message: str = "upstream 503") -> ProviderError:
    return ProviderError(message, provider="stub")
