from __future__ import annotations

import logging
import threading
from queue import Queue
from typing import Callable, Tuple
from uuid import UUID

StageTask = Tuple[UUID, str]


class BaseQueue:
    def enqueue(self, job_id: UUID, stage: str) -> None: ...  # pragma: no cover


class LocalQueue(BaseQueue):
    def __init__(self, processor: Callable[[UUID, str], None], logger: logging.Logger | None = None) -> None:
        self._processor = processor
        self._log = logger or logging.getLogger(__name__)
        self._queue: Queue[StageTask] = Queue()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def enqueue(self, job_id: UUID, stage: str) -> None:
        self._queue.put((job_id, stage))

    def join(self) -> None:
        self._queue.join()

    def _run(self) -> None:
        while True:
            job_id, stage = self._queue.get()
            try:
                self._processor(job_id, stage)
            except Exception:
                self._log.error(
                    "stage processing failed",
                    extra={"job_id": str(job_id), "stage": stage},
                    exc_info=True,
                )
            finally:
                self._queue.task_done()
