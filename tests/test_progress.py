from uuid import uuid4

import pytest

from storyshort.models.domain import VideoJob, VideoJobStatus
from storyshort.services.progress import (
    NOT_FOUND_MESSAGE,
    assets_percentage,
    report_progress,
    stream_progress,
)


def make_job(status, **fields):
    return VideoJob(id=uuid4(), input_text="A dog finds a friend", status=status, **fields)


@pytest.mark.parametrize(
    "status, percentage, message",
    [
        (VideoJobStatus.CREATED, 5, "Initializing…"),
        (VideoJobStatus.SCRIPT_GENERATING, 10, "Writing script…"),
        (VideoJobStatus.STORYBOARD_GENERATING, 20, "Building storyboard…"),
        (VideoJobStatus.ASSETS_GENERATED, 80, "Assets ready"),
        (VideoJobStatus.RENDERING, 90, "Rendering final video…"),
    ],
)
def test_fixed_stage_progress(status, percentage, message):
    snapshot = report_progress(make_job(status), uuid4())
    assert (snapshot.percentage, snapshot.message) == (percentage, message)
    assert not snapshot.is_terminal


def test_completed_reports_done_with_url():
    snapshot = report_progress(make_job(VideoJobStatus.COMPLETED, final_video_url="https://cdn/x.mp4"), uuid4())
    assert snapshot.percentage == 100
    assert snapshot.message == "Done"
    assert snapshot.final_video_url == "https://cdn/x.mp4"
    assert snapshot.is_terminal


def test_assets_progress_interpolates_upload_percent():
    start = report_progress(make_job(VideoJobStatus.ASSETS_GENERATING), uuid4())
    half = report_progress(make_job(VideoJobStatus.ASSETS_GENERATING, upload_progress_percent=50), uuid4())
    done = report_progress(make_job(VideoJobStatus.ASSETS_GENERATING, upload_progress_percent=100), uuid4())

    assert start.message == "Creating storyboard and generating images…"
    assert half.message == "Uploading images — 50% completed"
    assert start.percentage < half.percentage < done.percentage < 80


def test_assets_percentage_is_monotonic():
    values = [assets_percentage(p) for p in range(0, 101)]
    assert values == sorted(values)


def test_failed_state_freezes_percentage_and_reports_error():
    job = make_job(VideoJobStatus.ASSETS_FAILED, upload_progress_percent=60, error_message="No scene image could be generated")
    snapshot = report_progress(job, job.id)

    assert snapshot.percentage == assets_percentage(60)
    assert snapshot.message == "No scene image could be generated"
    assert snapshot.is_terminal


def test_render_failure_freezes_at_render_percentage():
    snapshot = report_progress(make_job(VideoJobStatus.RENDER_FAILED, error_message="Render failed"), uuid4())
    assert snapshot.percentage == 90
    assert snapshot.message == "Render failed"


def test_cancelled_is_terminal():
    snapshot = report_progress(make_job(VideoJobStatus.CANCELLED, script="x"), uuid4())
    assert snapshot.is_terminal
    assert snapshot.message == "Video generation was cancelled by user"


def test_missing_job_reports_initializing():
    job_id = uuid4()
    snapshot = report_progress(None, job_id)
    assert snapshot.job_id == job_id
    assert snapshot.message == NOT_FOUND_MESSAGE
    assert not snapshot.is_terminal


def test_stream_stops_at_terminal_status():
    job = make_job(VideoJobStatus.RENDERING)
    states = iter(
        [
            None,
            job,
            job,
            job.model_copy(update={"status": VideoJobStatus.COMPLETED, "final_video_url": "u"}),
        ]
    )
    sleeps = []

    snapshots = list(stream_progress(lambda _: next(states), job.id, sleep=sleeps.append))

    assert [s.message for s in snapshots] == [NOT_FOUND_MESSAGE, "Rendering final video…", "Done"]
    assert len(sleeps) == 3


def test_stream_respects_max_polls():
    job = make_job(VideoJobStatus.RENDERING)
    snapshots = list(stream_progress(lambda _: job, job.id, sleep=lambda _: None, max_polls=3))
    assert len(snapshots) == 1


def test_stream_gives_up_on_a_job_that_never_appears():
    loads = []

    def load(job_id):
        loads.append(job_id)
        return None

    snapshots = list(stream_progress(load, uuid4(), sleep=lambda _: None, max_missing_polls=4))

    assert [s.message for s in snapshots] == [NOT_FOUND_MESSAGE]
    assert len(loads) == 4


def test_missing_poll_count_resets_once_the_job_appears():
    job = make_job(VideoJobStatus.RENDERING)
    states = iter([None, None, job, job, make_job(VideoJobStatus.COMPLETED, final_video_url="u")])

    snapshots = list(stream_progress(lambda _: next(states), job.id, sleep=lambda _: None, max_missing_polls=3))

    assert snapshots[-1].message == "Done"
