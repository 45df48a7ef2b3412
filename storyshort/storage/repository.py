from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any, Dict, Iterable, List
from uuid import UUID, uuid4

from storyshort.errors import JobNotFound, StoreError
from storyshort.models.domain import VideoJob, VideoJobStatus


class VideoJobRepository:
    """In-process JobRecord store.

    ``update`` applies a partial field set atomically and bumps ``updated_at``;
    readers always receive deep copies so callers never share mutable state.
    """

    def __init__(self) -> None:
        self._jobs: Dict[UUID, VideoJob] = {}
        self._lock = Lock()

    def create(self, **fields: Any) -> UUID:
        job = VideoJob(id=uuid4(), **fields)
        with self._lock:
            self._jobs[job.id] = job
        return job.id

    def get(self, job_id: UUID) -> VideoJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            return job.model_copy(deep=True)

    def find(self, job_id: UUID) -> VideoJob | None:
        try:
            return self.get(job_id)
        except JobNotFound:
            return None

    def update(self, job_id: UUID, **fields: Any) -> VideoJob:
        with self._lock:
            return self._apply(job_id, fields)

    def update_if(self, job_id: UUID, allowed: Iterable[VideoJobStatus], **fields: Any) -> VideoJob | None:
        """Apply ``fields`` only while the job is in one of ``allowed`` statuses.

        Returns None, leaving the job untouched, when the status has moved on
        (for example a cancel landed while a stage was running).
        """
        allowed = set(allowed)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.status not in allowed:
                return None
            return self._apply(job_id, fields)

    def _apply(self, job_id: UUID, fields: Dict[str, Any]) -> VideoJob:
        unknown = set(fields) - set(VideoJob.model_fields)
        if unknown:
            raise StoreError(f"unknown job fields: {', '.join(sorted(unknown))}")
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        data = job.model_dump()
        data.update(fields)
        data["updated_at"] = datetime.utcnow()
        try:
            updated = VideoJob.model_validate(data)
        except ValueError as exc:
            raise StoreError(f"invalid job update: {exc}") from exc
        self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    def list(self) -> List[VideoJob]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]
