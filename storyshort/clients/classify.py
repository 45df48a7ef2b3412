from __future__ import annotations

import logging
from typing import Iterable

import httpx

from storyshort.errors import ERRORS_BY_KIND, ErrorKind, MediaError

CREDENTIAL_MARKERS = ("invalid_api_key", "incorrect api key", "invalid api key", "unauthorized")
QUOTA_MARKERS = (
    "billing_hard_limit_reached",
    "insufficient_quota",
    "quota_exceeded",
    "quota exceeded",
    "billing limit",
    "insufficient credits",
)
CONTENT_POLICY_MARKERS = (
    "content_policy_violation",
    "blocked by our content filters",
    "inappropriate content",
    "violates our content policy",
    "safety system",
)


def _contains(body: str, markers: Iterable[str]) -> bool:
    lowered = body.lower()
    return any(marker in lowered for marker in markers)


def classify_http_error(status: int | None, body: str = "") -> ErrorKind:
    body = body or ""
    if status in (401, 403) or _contains(body, CREDENTIAL_MARKERS):
        return ErrorKind.INVALID_CREDENTIALS
    if status == 402 or _contains(body, QUOTA_MARKERS):
        return ErrorKind.QUOTA_EXCEEDED
    if _contains(body, CONTENT_POLICY_MARKERS):
        return ErrorKind.CONTENT_POLICY_VIOLATION
    if status in (400, 404, 413, 422):
        return ErrorKind.INVALID_INPUT
    return ErrorKind.PROVIDER_ERROR


def to_media_error(exc: Exception, provider: str, log: logging.Logger | None = None) -> MediaError:
    """Translate a raw client failure into the typed error taxonomy."""
    if isinstance(exc, MediaError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code if exc.response is not None else None
        try:
            body = exc.response.text if exc.response is not None else ""
        except Exception:  # pragma: no cover
            body = "<binary>"
        kind = classify_http_error(status, body)
        message = f"{provider} HTTP {status}: {body}"
    elif isinstance(exc, httpx.TimeoutException):
        kind = ErrorKind.PROVIDER_ERROR
        message = f"{provider} request timed out: {exc}"
    else:
        kind = ErrorKind.PROVIDER_ERROR
        message = f"{provider} request failed: {exc}"
    if log is not None:
        log.warning(
            "provider call failed",
            extra={"provider": provider, "error_kind": kind.value, "error": message},
        )
    return ERRORS_BY_KIND[kind](message, provider=provider)
