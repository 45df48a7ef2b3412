from __future__ import annotations

import logging
import os
import tempfile
from typing import Callable, List, Optional, Protocol, Sequence
from uuid import UUID

from storyshort.clients.s3_storage import S3StorageClient
from storyshort.config import Settings
from storyshort.errors import CompositorError, PreconditionError, StoreError, StoryshortError
from storyshort.models.domain import Scene, VideoJob, VideoJobStatus
from storyshort.render.command import MOTION_STYLES, RenderProfile, build_compositor_command
from storyshort.render.compositor import render_with_fallback
from storyshort.render.concat import build_concat_manifest
from storyshort.render.media import measure_audio_duration, probe_audio_duration
from storyshort.services.timing import compute_durations, durations_disagree
from storyshort.storage.repository import VideoJobRepository

# statuses where a render request is refused without touching the job
RENDER_REFUSED = {VideoJobStatus.RENDERING, VideoJobStatus.COMPLETED, VideoJobStatus.CANCELLED}


class Compositor(Protocol):
    def run(self, args: Sequence[str]) -> None:
        ...


def precondition_violations(job: VideoJob) -> List[str]:
    violations = []
    if job.status != VideoJobStatus.ASSETS_GENERATED:
        violations.append(
            f"Render requires status assets_generated but the job is {job.status.value}"
        )
    if not job.captions_url:
        violations.append("Render requires captions but the job has no captions_url")
    if job.final_video_url:
        violations.append(f"Render refused: the job already has a final video at {job.final_video_url}")
    return violations


class RenderOrchestrator:
    """Drives a job from ``assets_generated`` through ``rendering`` to ``completed``."""

    def __init__(
        self,
        repo: VideoJobRepository,
        storage: S3StorageClient,
        compositor: Compositor,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
        measure_audio: Callable[[str], Optional[float]] = measure_audio_duration,
        probe_audio: Optional[Callable[[str], Optional[float]]] = None,
    ) -> None:
        self.repo = repo
        self.storage = storage
        self.compositor = compositor
        self.settings = settings
        self.profile = RenderProfile.from_settings(settings)
        self.log = logger or logging.getLogger(__name__)
        self.measure_audio = measure_audio
        self.probe_audio = probe_audio or (lambda path: probe_audio_duration(path, settings.ffprobe_binary))

    def render(self, job_id: UUID) -> VideoJob:
        job = self.repo.get(job_id)
        violations = precondition_violations(job)
        if violations:
            message = "; ".join(violations)
            if job.status in RENDER_REFUSED:
                raise PreconditionError(message)
            self.log.warning("render preconditions failed", extra={"job_id": str(job_id), "reason": message})
            return self.repo.update(job_id, status=VideoJobStatus.RENDER_FAILED, error_message=message)

        started = self.repo.update_if(
            job_id,
            {VideoJobStatus.ASSETS_GENERATED},
            status=VideoJobStatus.RENDERING,
            error_message=None,
        )
        if started is None:
            raise PreconditionError("the job changed state before rendering could start")

        try:
            with tempfile.TemporaryDirectory(prefix=f"render-{job_id}-", dir=self.settings.render_workdir) as workdir:
                return self._render_in(started, workdir)
        except CompositorError as exc:
            self.log.warning(
                "compositor failed",
                extra={"job_id": str(job_id), "returncode": exc.returncode, "stderr": exc.stderr},
            )
            message = f"Render failed: {exc}"
        except StoryshortError as exc:
            self.log.warning("render failed", extra={"job_id": str(job_id)}, exc_info=True)
            message = f"Render failed: {exc}"
        except Exception as exc:
            self.log.error("render crashed", extra={"job_id": str(job_id)}, exc_info=True)
            message = f"Render failed unexpectedly: {exc}"
        self._record_failure(job_id, message)
        return self.repo.get(job_id)

    def _render_in(self, job: VideoJob, workdir: str) -> VideoJob:
        job_id = job.id
        scenes = job.storyboard or []
        image_paths = [self._download_scene(job_id, scene, workdir) for scene in scenes]
        audio_path = self._download(job.audio_url, os.path.join(workdir, "narration.mp3"), "narration audio")
        captions_path = self._download(job.captions_url, os.path.join(workdir, "captions.srt"), "captions")

        durations = self._durations(job, audio_path)
        manifest_path = os.path.join(workdir, "scenes.ffconcat")
        with open(manifest_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(build_concat_manifest(image_paths, durations))

        output_path = os.path.join(workdir, f"{job_id}.mp4")
        variety = job_id.int % len(MOTION_STYLES)

        def build(with_captions: bool) -> List[str]:
            return build_compositor_command(
                manifest_path,
                audio_path,
                captions_path if with_captions else None,
                output_path,
                scene_index_for_variety=variety,
                profile=self.profile,
            )

        captions_burned = render_with_fallback(self.compositor.run, build, logger=self.log)
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise CompositorError(0, build(captions_burned), "compositor exited cleanly but wrote no output")
        with open(output_path, "rb") as f:
            video_url = self.storage.put(self.storage.final_video_key(job_id), f.read(), "video/mp4")

        finished = self.repo.update_if(
            job_id,
            {VideoJobStatus.RENDERING},
            status=VideoJobStatus.COMPLETED,
            final_video_url=video_url,
            captions_burned=captions_burned,
        )
        if finished is None:
            self.log.info("render discarded, job moved on", extra={"job_id": str(job_id)})
            self.storage.delete(video_url)
            return self.repo.get(job_id)
        self.log.info(
            "render completed",
            extra={"job_id": str(job_id), "captions_burned": captions_burned, "url": video_url},
        )
        return finished

    def _download(self, url: Optional[str], path: str, label: str) -> str:
        if not url:
            raise StoreError(f"missing {label} url")
        content = self.storage.get(url)
        with open(path, "wb") as f:
            f.write(content)
        return path

    def _download_scene(self, job_id: UUID, scene: Scene, workdir: str) -> str:
        path = os.path.join(workdir, f"scene-{scene.index + 1}.png")
        return self._download(scene.image_url, path, f"scene {scene.index + 1} image")

    def _durations(self, job: VideoJob, audio_path: str) -> List[float]:
        scenes = job.storyboard or []
        current = [scene.duration_seconds for scene in scenes]
        audio_seconds = self.measure_audio(audio_path)
        if audio_seconds is None:
            audio_seconds = self.probe_audio(audio_path)
        if audio_seconds is None:
            self.log.warning(
                "narration length unknown, rendering with stored scene durations",
                extra={"job_id": str(job.id), "total_duration": job.total_duration},
            )
        expected = compute_durations(
            len(scenes),
            audio_seconds,
            min_seconds=self.settings.min_scene_seconds,
            default_seconds=self.settings.default_scene_seconds,
        )
        if audio_seconds is None and all(value for value in current):
            return [float(value) for value in current]
        if not durations_disagree(current, expected, self.settings.duration_tolerance_seconds):
            return [float(value) for value in current]
        self.log.info(
            "scene durations recomputed from measured audio",
            extra={"job_id": str(job.id), "audio_seconds": audio_seconds},
        )
        retimed = [scene.model_copy(update={"duration_seconds": value}) for scene, value in zip(scenes, expected)]
        try:
            self.repo.update(
                job.id,
                storyboard=[scene.model_dump() for scene in retimed],
                total_duration=sum(expected),
            )
        except StoreError:
            self.log.warning("could not persist recomputed durations", extra={"job_id": str(job.id)}, exc_info=True)
        return expected

    def _record_failure(self, job_id: UUID, message: str) -> None:
        try:
            self.repo.update_if(
                job_id,
                {VideoJobStatus.RENDERING},
                status=VideoJobStatus.RENDER_FAILED,
                error_message=message,
            )
        except StoreError:
            self.log.error("could not record render failure", extra={"job_id": str(job_id)}, exc_info=True)
            try:
                self.repo.update(job_id, error_message=message)
            except StoreError:
                self.log.error("could not record error message", extra={"job_id": str(job_id)}, exc_info=True)
