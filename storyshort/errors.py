from __future__ import annotations

from enum import Enum
from typing import Sequence


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    CONTENT_POLICY_VIOLATION = "content_policy_violation"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_CREDENTIALS = "invalid_credentials"
    PROVIDER_ERROR = "provider_error"


USER_GUIDANCE = {
    ErrorKind.INVALID_INPUT: "The input could not be used",
    ErrorKind.CONTENT_POLICY_VIOLATION: "The image provider rejected the prompt under its content policy",
    ErrorKind.QUOTA_EXCEEDED: "The provider billing limit or quota was reached",
    ErrorKind.INVALID_CREDENTIALS: "The provider rejected the configured API key",
    ErrorKind.PROVIDER_ERROR: "The provider failed or timed out",
}


class StoryshortError(Exception):
    """Base class for every error raised by the pipeline."""


class MediaError(StoryshortError):
    kind: ErrorKind = ErrorKind.PROVIDER_ERROR

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.PROVIDER_ERROR, ErrorKind.CONTENT_POLICY_VIOLATION)

    def describe(self) -> str:
        prefix = USER_GUIDANCE[self.kind]
        return f"{prefix}: {self}"


class InvalidInputError(MediaError):
    kind = ErrorKind.INVALID_INPUT


class ContentPolicyViolation(MediaError):
    kind = ErrorKind.CONTENT_POLICY_VIOLATION


class QuotaExceeded(MediaError):
    kind = ErrorKind.QUOTA_EXCEEDED


class InvalidCredentials(MediaError):
    kind = ErrorKind.INVALID_CREDENTIALS


class ProviderError(MediaError):
    kind = ErrorKind.PROVIDER_ERROR


ERRORS_BY_KIND: dict[ErrorKind, type[MediaError]] = {
    ErrorKind.INVALID_INPUT: InvalidInputError,
    ErrorKind.CONTENT_POLICY_VIOLATION: ContentPolicyViolation,
    ErrorKind.QUOTA_EXCEEDED: QuotaExceeded,
    ErrorKind.INVALID_CREDENTIALS: InvalidCredentials,
    ErrorKind.PROVIDER_ERROR: ProviderError,
}


class StoreError(StoryshortError):
    """A JobRecord or object store read/write failed."""


class JobNotFound(StoryshortError):
    def __init__(self, job_id: object) -> None:
        super().__init__(f"Video job {job_id} not found")
        self.job_id = job_id


class PreconditionError(StoryshortError):
    """The job is not in a state that allows the requested operation."""


class CompositorError(StoryshortError):
    def __init__(self, returncode: int | None, args: Sequence[str], stderr: str) -> None:
        self.returncode = returncode
        self.args_list = list(args)
        self.stderr = stderr or ""
        super().__init__(
            f"compositor exited with code {returncode}\n"
            f"args: {' '.join(self.args_list)}\n"
            f"stderr:\n{self.stderr}"
        )
