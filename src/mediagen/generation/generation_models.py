"""Data structures for the generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    """Lifecycle statuses for generation_job records."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ProviderKind(StrEnum):
    """How a provider exposes job progress."""

    OPERATION_BASED = "operation_based"
    TASK_ID = "task_id"
    SYNCHRONOUS = "synchronous"


class ErrorKind(StrEnum):
    """Failure kinds persisted on FAILED jobs and echoed to callers."""

    VALIDATION_ERROR = "validation_error"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    PROVIDER_FAILURE = "provider_failure"
    STORAGE_CONFIGURATION = "storage_configuration"
    POST_SUCCESS_STORAGE_FAILURE = "post_success_storage_failure"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True, slots=True)
class ProviderHandle:
    """Provider-assigned reference returned at submission time."""

    operation_name: str | None = None
    task_id: str | None = None
    provider_job_id: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.operation_name or self.task_id or self.provider_job_id)

    def as_dict(self) -> dict[str, str]:
        payload: dict[str, str] = {}
        if self.operation_name:
            payload["operationName"] = self.operation_name
        if self.task_id:
            payload["taskId"] = self.task_id
        if self.provider_job_id:
            payload["providerJobId"] = self.provider_job_id
        return payload


@dataclass(frozen=True, slots=True)
class ArtifactSource:
    """Where the finished artifact can be read from.

    Exactly one of ``data`` (inline bytes) or ``uri`` (``gs://`` locator or
    http(s) download URL) is expected.
    """

    mime_type: str = "video/mp4"
    uri: str | None = None
    data: bytes | None = None
    access_url: str | None = None

    def describe(self) -> str:
        if self.uri:
            return self.uri
        return f"inline:{len(self.data or b'')}"


@dataclass(slots=True)
class GenerationJob:
    """Snapshot of a generation_job row."""

    id: str
    account_id: str
    provider: ProviderKind
    model_id: str
    requested_model: str
    prompt: str
    status: JobStatus
    media_kind: str = "video"
    parameters: dict[str, Any] = field(default_factory=dict)
    handle: ProviderHandle = field(default_factory=ProviderHandle)
    location_hint: str | None = None
    result_locator: str | None = None
    credits_reserved: int = 0
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    error_remediation: dict[str, Any] | None = None
    fallback_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


def pending_view(job: GenerationJob) -> GenerationJob:
    """Copy of ``job`` as callers see it while its outcome is not settled."""
    return replace(job, status=JobStatus.PROCESSING, result_locator=None, completed_at=None)


@dataclass(slots=True)
class GenerationResult:
    """What Submit and Poll report back for a job.

    ``result_url`` is a freshly minted short-lived access URL and is only set
    for completed jobs; the job itself carries the stable locator.
    """

    job: GenerationJob
    result_url: str | None = None
    already_completed: bool = False
