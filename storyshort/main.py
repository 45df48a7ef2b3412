from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Iterator
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import PlainTextResponse, StreamingResponse

from storyshort.config import Settings, get_settings
from storyshort.errors import InvalidInputError, JobNotFound, PreconditionError, StoryshortError
from storyshort.models.api import (
    ProgressResponse,
    ScriptUpdateRequest,
    VideoCreateRequest,
    VideoJobListResponse,
    VideoJobResponse,
)
from storyshort.queue.queue import LocalQueue
from storyshort.services.video_service import VideoService
from storyshort.storage.repository import VideoJobRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

_repo = VideoJobRepository()
_service: VideoService | None = None


@asynccontextmanager
async def lifespan(_app: FastAPI):
    try:
        yield
    finally:
        if _service is not None:
            _service.close()


app = FastAPI(title=get_settings().app_name, lifespan=lifespan)


def get_video_service(settings: Settings = Depends(get_settings)) -> VideoService:
    global _service
    if _service is None:
        service = VideoService(repo=_repo, settings=settings)
        if not settings.run_stages_inline:
            service.bind_queue(LocalQueue(processor=service.process_stage))
        _service = service
    return _service


def _http_error(exc: StoryshortError) -> HTTPException:
    if isinstance(exc, JobNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PreconditionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@app.post("/videos", response_model=VideoJobResponse, status_code=status.HTTP_201_CREATED)
def create_video(
    payload: VideoCreateRequest,
    service: VideoService = Depends(get_video_service),
) -> VideoJobResponse:
    try:
        job = service.create_job(payload)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


@app.get("/videos", response_model=VideoJobListResponse)
def list_videos(service: VideoService = Depends(get_video_service)) -> VideoJobListResponse:
    return VideoJobListResponse(items=service.list_jobs())


@app.get("/videos/{job_id}", response_model=VideoJobResponse)
def get_video(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    try:
        job = service.get_job(job_id)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


def _start(service: VideoService, job_id: UUID, stage: str) -> VideoJobResponse:
    try:
        job = service.start_stage(job_id, stage)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


@app.post("/videos/{job_id}/script:generate", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED)
def generate_script(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    return _start(service, job_id, "script")


@app.put("/videos/{job_id}/script", response_model=VideoJobResponse)
def update_script(
    job_id: UUID,
    payload: ScriptUpdateRequest,
    service: VideoService = Depends(get_video_service),
) -> VideoJobResponse:
    try:
        job = service.update_script(job_id, payload.script)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


@app.post(
    "/videos/{job_id}/storyboard:generate", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED
)
def generate_storyboard(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    return _start(service, job_id, "storyboard")


@app.post("/videos/{job_id}/assets:generate", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED)
def generate_assets(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    return _start(service, job_id, "assets")


@app.post("/videos/{job_id}/scenes/{scene_index}:regenerate", response_model=VideoJobResponse)
def regenerate_scene(
    job_id: UUID,
    scene_index: int,
    service: VideoService = Depends(get_video_service),
) -> VideoJobResponse:
    try:
        job = service.regenerate_scene(job_id, scene_index)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


@app.post("/videos/{job_id}/render", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED)
def render_video(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    return _start(service, job_id, "render")


@app.post("/videos/{job_id}:cancel", response_model=VideoJobResponse)
def cancel_video(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    try:
        job = service.cancel(job_id)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


@app.post("/videos/{job_id}:retry", response_model=VideoJobResponse)
def retry_video(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    try:
        job = service.retry(job_id)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


@app.get("/videos/{job_id}/progress", response_model=ProgressResponse)
def get_progress(job_id: UUID, service: VideoService = Depends(get_video_service)) -> ProgressResponse:
    return ProgressResponse(progress=service.progress(job_id))


@app.get("/videos/{job_id}/progress:stream")
def stream_progress(job_id: UUID, service: VideoService = Depends(get_video_service)) -> StreamingResponse:
    def events() -> Iterator[str]:
        for snapshot in service.stream_progress(job_id):
            yield f"data: {snapshot.model_dump_json()}\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")


@app.get("/videos/{job_id}/captions.srt", response_class=PlainTextResponse)
def get_captions(job_id: UUID, service: VideoService = Depends(get_video_service)) -> PlainTextResponse:
    try:
        text = service.captions_text(job_id)
    except StoryshortError as exc:
        raise _http_error(exc) from exc
    return PlainTextResponse(text, media_type="application/x-subrip")
