from __future__ import annotations

import time
from typing import Callable, Dict, Iterator, Optional, Tuple
from uuid import UUID

from storyshort.models.domain import ProgressSnapshot, VideoJob, VideoJobStatus

ASSETS_BAND = (30, 75)

FIXED_STAGES: Dict[VideoJobStatus, Tuple[int, str]] = {
    VideoJobStatus.CREATED: (5, "Initializing…"),
    VideoJobStatus.SCRIPT_GENERATING: (10, "Writing script…"),
    VideoJobStatus.SCRIPT_GENERATED: (15, "Script ready"),
    VideoJobStatus.STORYBOARD_GENERATING: (20, "Building storyboard…"),
    VideoJobStatus.STORYBOARD_GENERATED: (ASSETS_BAND[0], "Storyboard ready"),
    VideoJobStatus.ASSETS_GENERATED: (80, "Assets ready"),
    VideoJobStatus.RENDERING: (90, "Rendering final video…"),
    VideoJobStatus.COMPLETED: (100, "Done"),
}

# where each failure state froze: the percentage of the stage that was running
FAILED_AT = {
    VideoJobStatus.STORYBOARD_FAILED: VideoJobStatus.STORYBOARD_GENERATING,
    VideoJobStatus.ASSETS_FAILED: VideoJobStatus.ASSETS_GENERATING,
    VideoJobStatus.RENDER_FAILED: VideoJobStatus.RENDERING,
}

NOT_FOUND_MESSAGE = "Initializing, please wait"
CANCELLED_MESSAGE = "Video generation was cancelled by user"


def assets_percentage(upload_progress_percent: Optional[int]) -> int:
    start, end = ASSETS_BAND
    if upload_progress_percent is None:
        return start
    clamped = min(100, max(0, upload_progress_percent))
    return start + round((end - start) * clamped / 100)


def _last_known_percentage(job: VideoJob) -> int:
    if job.final_video_url:
        return 100
    if job.captions_url:
        return FIXED_STAGES[VideoJobStatus.ASSETS_GENERATED][0]
    if job.audio_url or job.upload_progress_percent:
        return assets_percentage(job.upload_progress_percent)
    if job.storyboard:
        return FIXED_STAGES[VideoJobStatus.STORYBOARD_GENERATED][0]
    if job.script:
        return FIXED_STAGES[VideoJobStatus.SCRIPT_GENERATED][0]
    return FIXED_STAGES[VideoJobStatus.CREATED][0]


def report_progress(job: Optional[VideoJob], job_id: UUID) -> ProgressSnapshot:
    """Map persisted job state to a progress snapshot.

    Read-only and safe to call at any rate. A job that is not visible yet reports a
    synthetic initializing state rather than an error.
    """
    if job is None:
        return ProgressSnapshot(job_id=job_id, status=None, percentage=0, message=NOT_FOUND_MESSAGE)

    status = job.status
    if status == VideoJobStatus.ASSETS_GENERATING:
        percent = job.upload_progress_percent
        if percent is None:
            message = "Creating storyboard and generating images…"
        else:
            message = f"Uploading images — {percent}% completed"
        return ProgressSnapshot(
            job_id=job.id, status=status, percentage=assets_percentage(percent), message=message
        )

    if status in FAILED_AT:
        running = FAILED_AT[status]
        if running == VideoJobStatus.ASSETS_GENERATING:
            percentage = assets_percentage(job.upload_progress_percent)
        else:
            percentage = FIXED_STAGES[running][0]
        return ProgressSnapshot(
            job_id=job.id,
            status=status,
            percentage=percentage,
            message=job.error_message or "Video generation failed",
        )

    if status == VideoJobStatus.CANCELLED:
        return ProgressSnapshot(
            job_id=job.id,
            status=status,
            percentage=_last_known_percentage(job),
            message=job.error_message or CANCELLED_MESSAGE,
        )

    percentage, message = FIXED_STAGES[status]
    if status == VideoJobStatus.CREATED and job.error_message:
        message = job.error_message
    return ProgressSnapshot(
        job_id=job.id,
        status=status,
        percentage=percentage,
        message=message,
        final_video_url=job.final_video_url,
    )


def stream_progress(
    load: Callable[[UUID], Optional[VideoJob]],
    job_id: UUID,
    poll_interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    max_polls: Optional[int] = None,
    max_missing_polls: Optional[int] = None,
) -> Iterator[ProgressSnapshot]:
    """Yield snapshots whenever they change, ending after the first terminal one.

    A job that is still unknown after ``max_missing_polls`` polls ends the stream
    on the initializing snapshot.
    """
    last: Optional[ProgressSnapshot] = None
    polls = 0
    missing = 0
    while True:
        job = load(job_id)
        snapshot = report_progress(job, job_id)
        missing = missing + 1 if job is None else 0
        if snapshot != last:
            yield snapshot
            last = snapshot
        if snapshot.is_terminal:
            return
        if max_missing_polls is not None and missing >= max_missing_polls:
            return
        polls += 1
        if max_polls is not None and polls >= max_polls:
            return
        sleep(poll_interval)
