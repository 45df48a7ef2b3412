from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

log = logging.getLogger(__name__)


def with_retry(
    fn: Callable[[], T],
    max_attempts: int = 2,
    is_retryable: Callable[[Exception], bool] = lambda exc: True,
    base_delay: float = 0.5,
    label: str = "op",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` up to ``max_attempts`` times with exponential backoff.

    The last exception is re-raised unchanged once attempts run out or
    ``is_retryable`` rejects it.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt == attempts or not is_retryable(exc):
                raise
            delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, 0.2) if base_delay > 0 else 0.0
            log.warning(
                "retrying after failure",
                extra={"label": label, "attempt": attempt, "max_attempts": attempts, "error": str(exc)},
            )
            sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover


def retry_on_media_error(exc: Exception) -> bool:
    retryable: Optional[bool] = getattr(exc, "retryable", None)
    return bool(retryable)
