from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, List, Optional
from uuid import UUID

from storyshort.clients.provider import MediaProvider
from storyshort.clients.s3_storage import S3StorageClient
from storyshort.config import Settings
from storyshort.errors import InvalidInputError, PreconditionError, StoreError
from storyshort.events.publisher import ProgressEventPublisher
from storyshort.models.api import VideoCreateRequest
from storyshort.models.domain import ProgressSnapshot, VideoJob, VideoJobStatus
from storyshort.queue.queue import BaseQueue
from storyshort.render.compositor import FFmpegCompositor
from storyshort.services.asset_service import (
    ASSETS_STARTABLE,
    SCRIPT_STARTABLE,
    STORYBOARD_STARTABLE,
    AssetOrchestrator,
)
from storyshort.services.progress import CANCELLED_MESSAGE, report_progress, stream_progress
from storyshort.services.render_service import Compositor, RenderOrchestrator
from storyshort.storage.repository import VideoJobRepository

STAGES = ("script", "storyboard", "assets", "render")

STAGE_STARTABLE = {
    "script": SCRIPT_STARTABLE,
    "storyboard": STORYBOARD_STARTABLE,
    "assets": ASSETS_STARTABLE,
}

NOT_CANCELLABLE = {VideoJobStatus.COMPLETED, VideoJobStatus.CANCELLED}


class VideoService:
    def __init__(
        self,
        repo: VideoJobRepository,
        settings: Settings,
        provider: MediaProvider | None = None,
        storage: S3StorageClient | None = None,
        compositor: Compositor | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay: float = 0.5,
    ) -> None:
        self.repo = repo
        self.settings = settings
        self.queue: BaseQueue | None = None
        self.log = logger or logging.getLogger(__name__)
        self.sleep = sleep
        self.storage = storage or S3StorageClient(
            bucket=settings.s3_bucket,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            public_url=settings.s3_public_url,
            addressing_style=settings.s3_addressing_style,
            folder_prefix=settings.storage_folder_prefix,
        )
        self.provider = provider or MediaProvider.from_settings(settings, logger=self.log)
        self.compositor = compositor or FFmpegCompositor(timeout=settings.compositor_timeout, logger=self.log)
        self.assets = AssetOrchestrator(
            repo,
            self.provider,
            self.storage,
            settings,
            logger=self.log,
            sleep=sleep,
            retry_delay=retry_delay,
        )
        self.renderer = RenderOrchestrator(repo, self.storage, self.compositor, settings, logger=self.log)
        self.events: ProgressEventPublisher | None = None
        if settings.kafka_enabled and settings.kafka_progress_topic:
            try:
                self.events = ProgressEventPublisher(
                    bootstrap_servers=settings.kafka_bootstrap_servers,
                    topic=settings.kafka_progress_topic,
                    logger=self.log,
                )
            except Exception:  # pragma: no cover - best effort logging
                self.log.warning(
                    "progress event publisher unavailable",
                    extra={"topic": settings.kafka_progress_topic},
                    exc_info=True,
                )

    def bind_queue(self, queue: BaseQueue) -> None:
        self.queue = queue

    def create_job(self, payload: VideoCreateRequest) -> VideoJob:
        text = payload.input_text.strip()
        if not text:
            raise InvalidInputError("input_text must not be empty")
        job_id = self.repo.create(input_text=text)
        self.log.info("video job created", extra={"job_id": str(job_id)})
        self._emit_progress(job_id)
        return self.repo.get(job_id)

    def get_job(self, job_id: UUID) -> VideoJob:
        return self.repo.get(job_id)

    def list_jobs(self) -> List[VideoJob]:
        return sorted(self.repo.list(), key=lambda job: job.created_at, reverse=True)

    def update_script(self, job_id: UUID, script: str) -> VideoJob:
        job = self.repo.get(job_id)
        if job.status != VideoJobStatus.SCRIPT_GENERATED:
            raise PreconditionError(f"the script can only be edited before the storyboard, job is {job.status.value}")
        text = (script or "").strip()
        if not text:
            raise InvalidInputError("script must not be empty")
        return self.repo.update(job_id, script=text)

    def start_stage(self, job_id: UUID, stage: str) -> VideoJob:
        """Validate and dispatch a pipeline stage, inline or through the bound queue."""
        if stage not in STAGES:
            raise InvalidInputError(f"unknown stage {stage!r}")
        job = self.repo.get(job_id)
        if stage == "assets" and job.status == VideoJobStatus.ASSETS_GENERATED:
            return job
        startable = STAGE_STARTABLE.get(stage)
        if startable is not None and job.status not in startable:
            raise PreconditionError(f"cannot start the {stage} stage while the job is {job.status.value}")
        if self.queue is None:
            return self.process_stage(job_id, stage)
        self.queue.enqueue(job_id, stage)
        return self.repo.get(job_id)

    def process_stage(self, job_id: UUID, stage: str) -> VideoJob:
        self.log.info("stage started", extra={"job_id": str(job_id), "stage": stage})
        try:
            if stage == "script":
                return self.assets.generate_script(job_id)
            if stage == "storyboard":
                return self.assets.generate_storyboard(job_id)
            if stage == "assets":
                return self.assets.generate_assets(job_id)
            if stage == "render":
                return self.renderer.render(job_id)
            raise InvalidInputError(f"unknown stage {stage!r}")
        finally:
            self._emit_progress(job_id)

    def regenerate_scene(self, job_id: UUID, scene_index: int) -> VideoJob:
        job = self.assets.regenerate_scene(job_id, scene_index)
        self._emit_progress(job_id)
        return job

    def cancel(self, job_id: UUID) -> VideoJob:
        job = self.repo.get(job_id)
        if job.status in NOT_CANCELLABLE:
            raise PreconditionError(f"a {job.status.value} job cannot be cancelled")
        job = self.repo.update(job_id, status=VideoJobStatus.CANCELLED, error_message=CANCELLED_MESSAGE)
        self.log.info("video job cancelled", extra={"job_id": str(job_id)})
        self._emit_progress(job_id)
        return job

    def retry(self, job_id: UUID) -> VideoJob:
        job = self.repo.get(job_id)
        target = self._retry_target(job)
        if target is None:
            raise PreconditionError(f"a {job.status.value} job has nothing to retry")
        job = self.repo.update(job_id, status=target, error_message=None, upload_progress_percent=None)
        self.log.info("video job reset for retry", extra={"job_id": str(job_id), "status": target.value})
        self._emit_progress(job_id)
        return job

    def _retry_target(self, job: VideoJob) -> Optional[VideoJobStatus]:
        if job.status == VideoJobStatus.CREATED and job.error_message:
            return VideoJobStatus.CREATED
        if job.status == VideoJobStatus.STORYBOARD_FAILED:
            return VideoJobStatus.SCRIPT_GENERATED
        if job.status == VideoJobStatus.ASSETS_FAILED:
            return VideoJobStatus.STORYBOARD_GENERATED
        if job.status == VideoJobStatus.RENDER_FAILED:
            # a render refused on preconditions may never have had assets
            if job.captions_url and job.audio_url:
                return VideoJobStatus.ASSETS_GENERATED
            if job.storyboard:
                return VideoJobStatus.STORYBOARD_GENERATED
            if job.script:
                return VideoJobStatus.SCRIPT_GENERATED
            return VideoJobStatus.CREATED
        return None

    def progress(self, job_id: UUID) -> ProgressSnapshot:
        return report_progress(self.repo.find(job_id), job_id)

    def stream_progress(self, job_id: UUID, max_polls: int | None = None) -> Iterator[ProgressSnapshot]:
        return stream_progress(
            self.repo.find,
            job_id,
            poll_interval=self.settings.progress_poll_interval,
            sleep=self.sleep,
            max_polls=max_polls,
            max_missing_polls=self.settings.progress_missing_max_polls,
        )

    def captions_text(self, job_id: UUID) -> str:
        job = self.repo.get(job_id)
        if not job.captions_url:
            raise PreconditionError("captions have not been generated for this job")
        return self.storage.get(job.captions_url).decode("utf-8")

    def close(self) -> None:
        if self.events:
            self.events.close()
            self.events = None

    def _emit_progress(self, job_id: UUID) -> None:
        if not self.events:
            return
        try:
            self.events.publish(self.progress(job_id))
        except (StoreError, RuntimeError):  # pragma: no cover
            self.log.warning("progress event emission failed", extra={"job_id": str(job_id)}, exc_info=True)
