import pytest

from conftest import SCRIPT, StubProvider, make_scenes, transient
from storyshort.config import Settings
from storyshort.errors import (
    ContentPolicyViolation,
    InvalidCredentials,
    InvalidInputError,
    PreconditionError,
    QuotaExceeded,
    StoreError,
)
from storyshort.models.domain import PlaceholderReason, VideoJobStatus
from storyshort.services.asset_service import AssetOrchestrator
from storyshort.services.captions import parse_srt
from storyshort.services.safety import SAFETY_PREAMBLE
from storyshort.storage.repository import VideoJobRepository


def build(repo, storage, settings, provider):
    return AssetOrchestrator(repo, provider, storage, settings, sleep=lambda _: None, retry_delay=0)


def prepare(repo, orchestrator):
    job_id = repo.create(input_text="A dog finds a friend")
    orchestrator.generate_script(job_id)
    orchestrator.generate_storyboard(job_id)
    return job_id


def prompts_for(provider, raw):
    return [prompt for prompt in provider.image_prompts if prompt.endswith(raw)]


def test_script_and_storyboard_stages(repo, assets):
    job_id = repo.create(input_text="A dog finds a friend")

    job = assets.generate_script(job_id)
    assert job.status == VideoJobStatus.SCRIPT_GENERATED
    assert job.script == SCRIPT

    job = assets.generate_storyboard(job_id)
    assert job.status == VideoJobStatus.STORYBOARD_GENERATED
    assert [scene.index for scene in job.storyboard] == [0, 1, 2]
    assert all(scene.duration_seconds == 3.0 for scene in job.storyboard)
    assert job.image_urls == []


def test_script_failure_keeps_job_created(repo, assets, provider):
    provider.script_error = InvalidInputError("input text is empty")
    job_id = repo.create(input_text="A dog finds a friend")

    job = assets.generate_script(job_id)

    assert job.status == VideoJobStatus.CREATED
    assert "input could not be used" in job.error_message
    assert job.script is None


def test_storyboard_failure_marks_stage_failed(repo, assets, provider):
    provider.storyboard_error = transient()
    job_id = repo.create(input_text="A dog finds a friend")
    assets.generate_script(job_id)

    job = assets.generate_storyboard(job_id)

    assert job.status == VideoJobStatus.STORYBOARD_FAILED
    assert "upstream 503" in job.error_message


def test_storyboard_is_truncated_to_max_scenes(repo, storage):
    settings = Settings(_env_file=None, max_scenes=2)
    orchestrator = build(repo, storage, settings, StubProvider(scenes=make_scenes(5)))

    job = repo.get(prepare(repo, orchestrator))

    assert len(job.storyboard) == 2


def test_all_scenes_succeed(repo, assets, provider, storage, storyboarded_job):
    job = assets.generate_assets(storyboarded_job)

    assert job.status == VideoJobStatus.ASSETS_GENERATED
    assert len(job.image_urls) == len(job.storyboard) == 3
    assert not any(scene.is_placeholder for scene in job.storyboard)
    assert [scene.duration_seconds for scene in job.storyboard] == [4.0, 4.0, 4.0]
    assert job.total_duration == 12.0
    assert job.upload_progress_percent == 100
    assert job.captions_source == "transcription"
    assert job.image_urls[0].endswith(f"videos/{job.id}/images/scene-1.png")
    assert job.audio_url.endswith(f"videos/{job.id}/audio/narration.mp3")
    assert job.captions_url.endswith(f"videos/{job.id}/captions/captions.srt")
    assert all(prompt.startswith(SAFETY_PREAMBLE[0]) for prompt in provider.image_prompts)
    assert storage.get(job.image_urls[1]).endswith(b"prompt 2")


@pytest.mark.parametrize(
    "failures",
    [
        {
            "prompt 1": [ContentPolicyViolation("rejected")],
            "prompt 2": [transient()],
            "prompt 3": [InvalidInputError("bad prompt")],
        },
        {"prompt 1": [QuotaExceeded("billing_hard_limit_reached")]},
    ],
)
def test_every_scene_failing_fails_the_stage(repo, storage, settings, failures):
    provider = StubProvider(image_failures=failures)
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.ASSETS_FAILED
    assert job.status.is_failure
    for position in (1, 2, 3):
        assert f"Scene {position}:" in job.error_message
    assert all(scene.is_placeholder and scene.placeholder_reason for scene in job.storyboard)


def test_partial_success_keeps_placeholders(repo, storage, settings):
    provider = StubProvider(image_failures={"prompt 2": [ContentPolicyViolation("content_policy_violation")]})
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.ASSETS_GENERATED
    assert len(job.image_urls) == 3
    placeholder = job.storyboard[1]
    assert placeholder.is_placeholder
    assert placeholder.placeholder_reason == PlaceholderReason.CONTENT_POLICY_VIOLATION
    assert len(prompts_for(provider, "prompt 2")) == 2
    assert not job.storyboard[0].is_placeholder and not job.storyboard[2].is_placeholder


def test_transient_failure_is_retried_once(repo, storage, settings):
    provider = StubProvider(image_failures={"prompt 1": [transient(), None]})
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert not job.storyboard[0].is_placeholder
    assert len(prompts_for(provider, "prompt 1")) == 2


def test_fallback_provider_used_after_retry(repo, storage, settings):
    provider = StubProvider(image_failures={"prompt 2": [transient()]}, fallback=True)
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert not job.storyboard[1].is_placeholder
    assert len(provider.fallback_prompts) == 1
    assert storage.get(job.storyboard[1].image_url) == b"fallback-png"


def test_quota_exceeded_stops_scene_loop(repo, storage, settings):
    provider = StubProvider(
        scenes=make_scenes(5),
        image_failures={"prompt 3": [QuotaExceeded("insufficient_quota")]},
        fallback=True,
    )
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.ASSETS_GENERATED
    scenes = job.storyboard
    assert [scene.is_placeholder for scene in scenes] == [False, False, True, True, True]
    assert scenes[2].placeholder_reason.value == "QuotaExceeded"
    assert [scene.placeholder_reason for scene in scenes[3:]] == [PlaceholderReason.NOT_ATTEMPTED] * 2
    assert len(provider.image_prompts) == 3
    assert not prompts_for(provider, "prompt 4") and not prompts_for(provider, "prompt 5")
    assert provider.fallback_prompts == []
    assert len(job.image_urls) == 5


def test_invalid_credentials_fail_the_stage(repo, storage, settings):
    provider = StubProvider(image_failures={"prompt 2": [InvalidCredentials("invalid_api_key")]})
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.ASSETS_FAILED
    assert "API key" in job.error_message
    assert job.storyboard[2].placeholder_reason == PlaceholderReason.NOT_ATTEMPTED
    assert not prompts_for(provider, "prompt 3")


def test_transcription_failure_uses_naive_captions(repo, storage, settings, provider):
    provider.transcribe_error = transient("whisper crashed")
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.ASSETS_GENERATED
    assert job.captions_url is not None
    assert job.captions_source == "naive"
    cues = parse_srt(storage.get(job.captions_url).decode("utf-8"))
    assert len(cues) == 3
    assert cues[-1].end_seconds == 12.0


def test_assets_stage_is_idempotent(repo, assets, provider, storyboarded_job):
    first = assets.generate_assets(storyboarded_job)
    calls = (len(provider.image_prompts), provider.speech_calls)

    second = assets.generate_assets(storyboarded_job)

    assert (len(provider.image_prompts), provider.speech_calls) == calls
    assert second.model_dump() == first.model_dump()


def test_speech_failure_is_fatal(repo, assets, provider, storyboarded_job):
    provider.speech_error = QuotaExceeded("quota exceeded")

    job = assets.generate_assets(storyboarded_job)

    assert job.status == VideoJobStatus.ASSETS_FAILED
    assert "billing limit or quota" in job.error_message
    assert provider.image_prompts == []


def test_cancel_stops_before_next_scene(repo, storage, settings):
    class CancellingProvider(StubProvider):
        def image(self, prompt):
            content = super().image(prompt)
            repo.update(job_id, status=VideoJobStatus.CANCELLED, error_message="Video generation was cancelled by user")
            return content

    provider = CancellingProvider()
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.CANCELLED
    assert len(provider.image_prompts) == 1
    assert job.captions_url is None
    assert job.image_urls == []
    assert job.upload_progress_percent == 0
    assert all(scene.image_url is None for scene in job.storyboard)


def test_cancel_during_narration_discards_audio(repo, storage, settings):
    class CancellingProvider(StubProvider):
        def speech(self, text):
            result = super().speech(text)
            repo.update(job_id, status=VideoJobStatus.CANCELLED, error_message="Video generation was cancelled by user")
            return result

    provider = CancellingProvider()
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.CANCELLED
    assert job.audio_url is None
    assert provider.image_prompts == []
    with pytest.raises(StoreError):
        storage.get(storage.public_url(storage.audio_key(job_id)))


def test_upload_progress_is_monotonic_and_survives_store_errors(storage, settings):
    class FlakyProgressRepository(VideoJobRepository):
        def __init__(self):
            super().__init__()
            self.percents = []

        def update_if(self, job_id, allowed, **fields):
            if set(fields) == {"upload_progress_percent"}:
                self.percents.append(fields["upload_progress_percent"])
                if fields["upload_progress_percent"] == 67:
                    raise StoreError("progress write timed out")
            return super().update_if(job_id, allowed, **fields)

    repo = FlakyProgressRepository()
    orchestrator = build(repo, storage, settings, StubProvider())
    job_id = prepare(repo, orchestrator)

    job = orchestrator.generate_assets(job_id)

    assert job.status == VideoJobStatus.ASSETS_GENERATED
    assert repo.percents == [33, 67, 100]
    assert repo.percents == sorted(repo.percents)


def test_generate_assets_requires_storyboard(repo, assets):
    job_id = repo.create(input_text="A dog finds a friend")
    with pytest.raises(PreconditionError):
        assets.generate_assets(job_id)


def test_regenerate_scene_only_touches_that_scene(repo, storage, settings):
    provider = StubProvider(image_failures={"prompt 2": [ContentPolicyViolation("rejected")]})
    orchestrator = build(repo, storage, settings, provider)
    job_id = prepare(repo, orchestrator)
    before = orchestrator.generate_assets(job_id)
    provider.image_failures.clear()

    after = orchestrator.regenerate_scene(job_id, 1)

    assert after.status == VideoJobStatus.ASSETS_GENERATED
    assert not after.storyboard[1].is_placeholder
    assert after.storyboard[1].placeholder_reason is None
    assert [s.duration_seconds for s in after.storyboard] == [s.duration_seconds for s in before.storyboard]
    assert after.storyboard[0] == before.storyboard[0]
    assert after.storyboard[2] == before.storyboard[2]
    assert len(after.image_urls) == 3


def test_regenerate_scene_rejects_bad_index(repo, assets, storyboarded_job):
    with pytest.raises(InvalidInputError):
        assets.regenerate_scene(storyboarded_job, 7)
