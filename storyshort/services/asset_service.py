from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from storyshort.clients.provider import MediaProvider
from storyshort.clients.s3_storage import S3StorageClient
from storyshort.config import Settings
from storyshort.errors import (
    ErrorKind,
    InvalidInputError,
    MediaError,
    PreconditionError,
    ProviderError,
    StoreError,
    StoryshortError,
)
from storyshort.models.domain import (
    CaptionSegment,
    PlaceholderReason,
    Scene,
    VideoJob,
    VideoJobStatus,
)
from storyshort.render.media import placeholder_png
from storyshort.services.captions import format_srt, naive_captions
from storyshort.services.retry import retry_on_media_error, with_retry
from storyshort.services.safety import sanitize_prompt
from storyshort.services.script_text import strip_meta, to_plain_narration
from storyshort.services.timing import compute_durations
from storyshort.storage.repository import VideoJobRepository

PLACEHOLDER_REASONS = {
    ErrorKind.INVALID_INPUT: PlaceholderReason.INVALID_INPUT,
    ErrorKind.CONTENT_POLICY_VIOLATION: PlaceholderReason.CONTENT_POLICY_VIOLATION,
    ErrorKind.QUOTA_EXCEEDED: PlaceholderReason.QUOTA_EXCEEDED,
    ErrorKind.INVALID_CREDENTIALS: PlaceholderReason.INVALID_CREDENTIALS,
    ErrorKind.PROVIDER_ERROR: PlaceholderReason.PROVIDER_ERROR,
}
# failure kinds that stop the scene loop: retrying further scenes cannot succeed
LOOP_STOPPING_KINDS = (ErrorKind.QUOTA_EXCEEDED, ErrorKind.INVALID_CREDENTIALS)

SCRIPT_STARTABLE = {VideoJobStatus.CREATED, VideoJobStatus.SCRIPT_GENERATED}
STORYBOARD_STARTABLE = {VideoJobStatus.SCRIPT_GENERATED, VideoJobStatus.STORYBOARD_FAILED}
ASSETS_STARTABLE = {VideoJobStatus.STORYBOARD_GENERATED, VideoJobStatus.ASSETS_FAILED}
SCENE_REGENERATABLE = {
    VideoJobStatus.STORYBOARD_GENERATED,
    VideoJobStatus.ASSETS_GENERATED,
    VideoJobStatus.ASSETS_FAILED,
    VideoJobStatus.RENDER_FAILED,
}


class SceneImage:
    def __init__(self, content: bytes | None = None, error: MediaError | None = None) -> None:
        self.content = content
        self.error = error

    @property
    def ok(self) -> bool:
        return self.content is not None


class AssetOrchestrator:
    """Drives a job from ``created`` to ``assets_generated``.

    Each stage re-reads the job from the repository, so a cancel issued between
    scenes or stages is honoured at the next checkpoint. Results of provider calls
    that finish after a cancel are discarded.
    """

    def __init__(
        self,
        repo: VideoJobRepository,
        provider: MediaProvider,
        storage: S3StorageClient,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay: float = 0.5,
    ) -> None:
        self.repo = repo
        self.provider = provider
        self.storage = storage
        self.settings = settings
        self.log = logger or logging.getLogger(__name__)
        self.sleep = sleep
        self.retry_delay = retry_delay

    # script stage

    def generate_script(self, job_id: UUID) -> VideoJob:
        job = self.repo.get(job_id)
        if job.status not in SCRIPT_STARTABLE:
            raise PreconditionError(f"cannot generate a script while the job is {job.status.value}")
        self.repo.update(job_id, status=VideoJobStatus.SCRIPT_GENERATING, error_message=None)
        try:
            script = strip_meta(self.provider.script(job.input_text))
            if not script:
                raise InvalidInputError("the script provider returned an empty script")
        except MediaError as exc:
            self.log.warning(
                "script generation failed",
                extra={"job_id": str(job_id), "error_kind": exc.kind.value},
                exc_info=True,
            )
            self._record_failure(job_id, VideoJobStatus.CREATED, exc.describe(), {VideoJobStatus.SCRIPT_GENERATING})
            return self.repo.get(job_id)
        updated = self.repo.update_if(
            job_id,
            {VideoJobStatus.SCRIPT_GENERATING},
            script=script,
            status=VideoJobStatus.SCRIPT_GENERATED,
        )
        return updated or self.repo.get(job_id)

    # storyboard stage

    def generate_storyboard(self, job_id: UUID) -> VideoJob:
        job = self.repo.get(job_id)
        if job.status not in STORYBOARD_STARTABLE:
            raise PreconditionError(f"cannot build a storyboard while the job is {job.status.value}")
        if not job.script:
            raise PreconditionError("the job has no script to build a storyboard from")
        self.repo.update(job_id, status=VideoJobStatus.STORYBOARD_GENERATING, error_message=None)
        try:
            scenes = self._build_scenes(job.script)
        except MediaError as exc:
            self.log.warning(
                "storyboard generation failed",
                extra={"job_id": str(job_id), "error_kind": exc.kind.value},
                exc_info=True,
            )
            self._record_failure(
                job_id, VideoJobStatus.STORYBOARD_FAILED, exc.describe(), {VideoJobStatus.STORYBOARD_GENERATING}
            )
            return self.repo.get(job_id)
        updated = self.repo.update_if(
            job_id,
            {VideoJobStatus.STORYBOARD_GENERATING},
            storyboard=[scene.model_dump() for scene in scenes],
            image_urls=[],
            total_duration=sum(scene.duration_seconds or 0.0 for scene in scenes),
            status=VideoJobStatus.STORYBOARD_GENERATED,
        )
        return updated or self.repo.get(job_id)

    def _build_scenes(self, script: str) -> List[Scene]:
        raw_scenes = self.provider.storyboard(script)
        if not raw_scenes:
            raise InvalidInputError("the storyboard provider returned no scenes")
        max_scenes = max(1, self.settings.max_scenes)
        if len(raw_scenes) > max_scenes:
            self.log.info("storyboard truncated", extra={"scenes": len(raw_scenes), "max_scenes": max_scenes})
            raw_scenes = raw_scenes[:max_scenes]
        for position, raw in enumerate(raw_scenes, start=1):
            if not raw.narration_text.strip() or not raw.image_prompt.strip():
                raise InvalidInputError(f"storyboard scene {position} is missing narration or an image prompt")
        durations = compute_durations(
            len(raw_scenes),
            None,
            min_seconds=self.settings.min_scene_seconds,
            default_seconds=self.settings.default_scene_seconds,
        )
        return [
            Scene(
                index=index,
                narration_text=raw.narration_text.strip(),
                image_prompt=raw.image_prompt.strip(),
                duration_seconds=duration,
            )
            for index, (raw, duration) in enumerate(zip(raw_scenes, durations))
        ]

    # assets stage

    def generate_assets(self, job_id: UUID) -> VideoJob:
        job = self.repo.get(job_id)
        if job.status == VideoJobStatus.ASSETS_GENERATED:
            self.log.info("assets already generated, skipping", extra={"job_id": str(job_id)})
            return job
        if job.status not in ASSETS_STARTABLE:
            raise PreconditionError(f"cannot generate assets while the job is {job.status.value}")
        if not job.storyboard:
            raise PreconditionError("the job has no storyboard to generate assets for")
        self.repo.update(
            job_id,
            status=VideoJobStatus.ASSETS_GENERATING,
            error_message=None,
            upload_progress_percent=0,
        )
        try:
            return self._run_assets(job)
        except StoryshortError as exc:
            message = exc.describe() if isinstance(exc, MediaError) else str(exc)
            self.log.warning("asset generation failed", extra={"job_id": str(job_id)}, exc_info=True)
        except Exception as exc:
            message = f"Unexpected asset generation failure: {exc}"
            self.log.error("asset generation crashed", extra={"job_id": str(job_id)}, exc_info=True)
        self._record_failure(job_id, VideoJobStatus.ASSETS_FAILED, message, {VideoJobStatus.ASSETS_GENERATING})
        return self.repo.get(job_id)

    def _run_assets(self, job: VideoJob) -> VideoJob:
        job_id = job.id
        narration = to_plain_narration(job.script) or " ".join(scene.narration_text for scene in job.storyboard)
        speech = self.provider.speech(narration)
        if self._cancelled(job_id):
            self.log.info("asset generation cancelled after narration", extra={"job_id": str(job_id)})
            return self.repo.get(job_id)
        audio_url = self.storage.put(self.storage.audio_key(job_id), speech.audio, "audio/mpeg")
        durations = compute_durations(
            len(job.storyboard),
            speech.duration_seconds,
            min_seconds=self.settings.min_scene_seconds,
            default_seconds=self.settings.default_scene_seconds,
        )
        scenes = [
            scene.model_copy(
                update={
                    "duration_seconds": duration,
                    "image_url": None,
                    "is_placeholder": False,
                    "placeholder_reason": None,
                }
            )
            for scene, duration in zip(job.storyboard, durations)
        ]
        if (
            self.repo.update_if(
                job_id,
                {VideoJobStatus.ASSETS_GENERATING},
                audio_url=audio_url,
                storyboard=[scene.model_dump() for scene in scenes],
                image_urls=[],
                total_duration=sum(durations),
            )
            is None
        ):
            return self._discard(job_id, [audio_url])
        self.log.info(
            "narration ready",
            extra={"job_id": str(job_id), "audio_seconds": speech.duration_seconds, "scenes": len(scenes)},
        )

        failures: List[str] = []
        stopped_by: MediaError | None = None
        for position, scene in enumerate(scenes, start=1):
            if self._cancelled(job_id):
                self.log.info("asset generation cancelled", extra={"job_id": str(job_id), "scene": scene.index})
                return self.repo.get(job_id)
            if stopped_by is not None:
                self._apply_placeholder(job_id, scene, PlaceholderReason.NOT_ATTEMPTED)
                failures.append(f"Scene {position}: not attempted after {stopped_by.kind.value}")
            else:
                result = self._generate_scene_image(job_id, scene)
                if self._cancelled(job_id):
                    self.log.info(
                        "scene result discarded, job cancelled", extra={"job_id": str(job_id), "scene": scene.index}
                    )
                    return self.repo.get(job_id)
                if result.ok:
                    self._apply_image(job_id, scene, result.content)
                else:
                    self._apply_placeholder(job_id, scene, PLACEHOLDER_REASONS[result.error.kind])
                    failures.append(f"Scene {position}: {result.error.describe()}")
                    if result.error.kind in LOOP_STOPPING_KINDS:
                        stopped_by = result.error
                        self.log.warning(
                            "scene loop stopped",
                            extra={"job_id": str(job_id), "scene": scene.index, "error_kind": result.error.kind.value},
                        )
            if (
                self.repo.update_if(
                    job_id,
                    {VideoJobStatus.ASSETS_GENERATING},
                    storyboard=[item.model_dump() for item in scenes],
                    image_urls=[item.image_url for item in scenes if item.image_url],
                )
                is None
            ):
                return self._discard(job_id, [scene.image_url])
            self._report_upload_progress(job_id, round(position / len(scenes) * 100))

        real_images = sum(1 for scene in scenes if not scene.is_placeholder)
        if real_images == 0:
            raise StoryshortError("No scene image could be generated:\n" + "\n".join(failures))
        if stopped_by is not None and stopped_by.kind == ErrorKind.INVALID_CREDENTIALS:
            raise stopped_by.__class__(
                "Image generation stopped on rejected credentials:\n" + "\n".join(failures),
                provider=stopped_by.provider,
            )

        if self._cancelled(job_id):
            return self.repo.get(job_id)
        segments, source = self._captions(job_id, speech.audio, narration, speech.duration_seconds or sum(durations))
        captions_url = self.storage.put_text(
            self.storage.captions_key(job_id), format_srt(segments), "application/x-subrip"
        )
        updated = self.repo.update_if(
            job_id,
            {VideoJobStatus.ASSETS_GENERATING},
            captions_url=captions_url,
            captions_source=source,
            upload_progress_percent=100,
            status=VideoJobStatus.ASSETS_GENERATED,
        )
        self.log.info(
            "assets generated",
            extra={"job_id": str(job_id), "real_images": real_images, "placeholders": len(scenes) - real_images},
        )
        return updated or self.repo.get(job_id)

    def _generate_scene_image(self, job_id: UUID, scene: Scene) -> SceneImage:
        prompt = sanitize_prompt(scene.image_prompt)
        try:
            content = with_retry(
                lambda: self.provider.image(prompt),
                max_attempts=2,
                is_retryable=retry_on_media_error,
                base_delay=self.retry_delay,
                label=f"scene-{scene.index + 1}-image",
                sleep=self.sleep,
            )
            return SceneImage(content=content)
        except MediaError as exc:
            primary_error = exc
        except Exception as exc:
            primary_error = ProviderError(f"image provider crashed: {exc}")
        self.log.warning(
            "scene image failed",
            extra={"job_id": str(job_id), "scene": scene.index, "error_kind": primary_error.kind.value},
        )
        if primary_error.kind in LOOP_STOPPING_KINDS or not self.provider.has_fallback_image():
            return SceneImage(error=primary_error)
        try:
            return SceneImage(content=self.provider.fallback_image(prompt))
        except MediaError as exc:
            self.log.warning(
                "fallback scene image failed",
                extra={"job_id": str(job_id), "scene": scene.index, "error_kind": exc.kind.value},
            )
            return SceneImage(error=exc if exc.kind in LOOP_STOPPING_KINDS else primary_error)
        except Exception:
            self.log.warning("fallback image provider crashed", extra={"job_id": str(job_id)}, exc_info=True)
            return SceneImage(error=primary_error)

    def _apply_image(self, job_id: UUID, scene: Scene, content: bytes) -> None:
        scene.image_url = self.storage.put(self.storage.image_key(job_id, scene.index), content, "image/png")
        scene.is_placeholder = False
        scene.placeholder_reason = None

    def _apply_placeholder(self, job_id: UUID, scene: Scene, reason: PlaceholderReason) -> None:
        content = placeholder_png(self.settings.video_width, self.settings.video_height)
        scene.image_url = self.storage.put(self.storage.image_key(job_id, scene.index), content, "image/png")
        scene.is_placeholder = True
        scene.placeholder_reason = reason

    def _captions(
        self, job_id: UUID, audio: bytes, narration: str, total_seconds: float
    ) -> Tuple[List[CaptionSegment], str]:
        try:
            segments = self.provider.transcribe(audio)
            if not segments:
                raise ProviderError("transcription returned no segments")
            return segments, "transcription"
        except Exception:
            self.log.warning("transcription failed, using naive captions", extra={"job_id": str(job_id)}, exc_info=True)
        return naive_captions(narration, total_seconds), "naive"

    # single scene

    def regenerate_scene(self, job_id: UUID, scene_index: int) -> VideoJob:
        job = self.repo.get(job_id)
        if job.status not in SCENE_REGENERATABLE:
            raise PreconditionError(f"cannot regenerate a scene while the job is {job.status.value}")
        scenes = job.storyboard or []
        if not 0 <= scene_index < len(scenes):
            raise InvalidInputError(f"scene index {scene_index} is out of range for {len(scenes)} scenes")
        scene = scenes[scene_index]
        result = self._generate_scene_image(job_id, scene)
        if result.ok:
            self._apply_image(job_id, scene, result.content)
        else:
            self._apply_placeholder(job_id, scene, PLACEHOLDER_REASONS[result.error.kind])
        self.log.info(
            "scene regenerated",
            extra={"job_id": str(job_id), "scene": scene_index, "placeholder": scene.is_placeholder},
        )
        return self.repo.update(
            job_id,
            storyboard=[item.model_dump() for item in scenes],
            image_urls=[item.image_url for item in scenes if item.image_url],
        )

    # helpers

    def _cancelled(self, job_id: UUID) -> bool:
        job = self.repo.find(job_id)
        return job is None or job.status == VideoJobStatus.CANCELLED

    def _discard(self, job_id: UUID, urls: List[Optional[str]]) -> VideoJob:
        self.log.info("asset results discarded, job moved on", extra={"job_id": str(job_id)})
        for url in urls:
            if not url:
                continue
            try:
                self.storage.delete(url)
            except StoreError:
                self.log.warning("could not delete discarded asset", extra={"job_id": str(job_id), "url": url})
        return self.repo.get(job_id)

    def _report_upload_progress(self, job_id: UUID, percent: int) -> None:
        try:
            self.repo.update_if(job_id, {VideoJobStatus.ASSETS_GENERATING}, upload_progress_percent=percent)
        except StoreError:
            self.log.warning("progress update failed", extra={"job_id": str(job_id), "percent": percent}, exc_info=True)

    def _record_failure(
        self, job_id: UUID, status: VideoJobStatus, message: str, expected: set[VideoJobStatus]
    ) -> None:
        try:
            if self.repo.update_if(job_id, expected, status=status, error_message=message) is None:
                self.log.info("failure not recorded, job moved on", extra={"job_id": str(job_id)})
        except StoreError:
            self.log.error("could not record failure", extra={"job_id": str(job_id), "error": message}, exc_info=True)
            try:
                self.repo.update(job_id, error_message=message)
            except StoreError:
                self.log.error("could not record error message", extra={"job_id": str(job_id)}, exc_info=True)
