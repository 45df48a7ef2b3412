import json
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

import storyshort.events.publisher as publisher_module
import storyshort.main as main_module
from conftest import FakeCompositor, StubProvider
from storyshort.events.publisher import ProgressEventPublisher
from storyshort.models.domain import ProgressSnapshot, VideoJobStatus
from storyshort.services.video_service import VideoService


class FakeProducer:
    instances = []

    def __init__(self, bootstrap_servers, value_serializer, **kwargs):
        self.bootstrap_servers = bootstrap_servers
        self.value_serializer = value_serializer
        self.sent = []
        self.flushed = False
        self.closed = False
        FakeProducer.instances.append(self)

    def send(self, topic, key=None, value=None):
        self.sent.append((topic, key, self.value_serializer(value)))

    def flush(self):
        self.flushed = True

    def close(self):
        self.closed = True


@pytest.fixture
def producer(monkeypatch):
    FakeProducer.instances = []
    monkeypatch.setattr(publisher_module, "KafkaProducer", FakeProducer)
    return FakeProducer


def test_publish_keys_by_job_and_wraps_snapshot(producer):
    job_id = uuid4()
    events = ProgressEventPublisher("broker:9092", "video_progress")
    snapshot = ProgressSnapshot(job_id=job_id, status=VideoJobStatus.RENDERING, percentage=90, message="Rendering")

    events.publish(snapshot, {"source": "storyshort"})

    fake = producer.instances[0]
    assert fake.bootstrap_servers == "broker:9092"
    topic, key, value = fake.sent[0]
    assert topic == "video_progress"
    assert key == str(job_id).encode("utf-8")
    payload = json.loads(value)
    assert payload["source"] == "storyshort"
    assert payload["progress"]["job_id"] == str(job_id)
    assert payload["progress"]["status"] == "rendering"
    assert payload["progress"]["percentage"] == 90


def test_publisher_requires_topic(producer):
    with pytest.raises(ValueError):
        ProgressEventPublisher("broker:9092", "")


def test_service_emits_one_event_per_stage_and_closes(producer, repo, storage, settings):
    settings = settings.model_copy(update={"kafka_enabled": True})
    service = VideoService(
        repo=repo,
        settings=settings,
        provider=StubProvider(),
        storage=storage,
        compositor=FakeCompositor(),
        sleep=lambda _: None,
        retry_delay=0,
    )
    job_id = repo.create(input_text="A dog finds a friend")

    service.start_stage(job_id, "script")
    service.start_stage(job_id, "storyboard")
    service.close()

    fake = producer.instances[0]
    statuses = [json.loads(value)["progress"]["status"] for _, _, value in fake.sent]
    assert statuses == ["script_generated", "storyboard_generated"]
    assert all(key == str(job_id).encode("utf-8") for _, key, _ in fake.sent)
    assert fake.flushed and fake.closed
    assert service.events is None


def test_app_shutdown_closes_the_service(monkeypatch):
    class ClosingService:
        closed = False

        def close(self):
            self.closed = True

    service = ClosingService()
    monkeypatch.setattr(main_module, "_service", service)

    with TestClient(main_module.app):
        pass

    assert service.closed
