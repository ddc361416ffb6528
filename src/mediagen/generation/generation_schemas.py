"""Pydantic schemas for the generation API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .generation_models import GenerationJob, GenerationResult, JobStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class HandleModel(_CamelModel):
    operation_name: str | None = Field(default=None, alias="operationName")
    task_id: str | None = Field(default=None, alias="taskId")
    provider_job_id: str | None = Field(default=None, alias="providerJobId")


class SubmitRequestModel(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    prompt: str | None = None
    model_alias: str | None = Field(default=None, alias="modelAlias")
    parameters: dict[str, Any] = Field(default_factory=dict)


class PollRequestModel(_CamelModel):
    job_id: str = Field(alias="jobId", min_length=1)
    operation_name: str | None = Field(default=None, alias="operationName")
    task_id: str | None = Field(default=None, alias="taskId")
    provider_job_id: str | None = Field(default=None, alias="providerJobId")
    handle: HandleModel | None = None

    def submitted_handle(self) -> dict[str, str]:
        nested = self.handle or HandleModel()
        values = {
            "operationName": self.operation_name or nested.operation_name,
            "taskId": self.task_id or nested.task_id,
            "providerJobId": self.provider_job_id or nested.provider_job_id,
        }
        return {key: value for key, value in values.items() if value}


class GenerationResponse(_CamelModel):
    job_id: str = Field(alias="jobId")
    status: JobStatus
    model_id: str = Field(alias="modelId")
    requested_model: str = Field(alias="requestedModel")
    media_kind: str = Field(default="video", alias="mediaKind")
    handle: HandleModel | None = None
    credits_reserved: int = Field(alias="creditsReserved")
    result_url: str | None = Field(default=None, alias="resultUrl")
    result_locator: str | None = Field(default=None, alias="resultLocator")
    fallback_reason: str | None = Field(default=None, alias="fallbackReason")
    already_completed: bool | None = Field(default=None, alias="alreadyCompleted")
    error: str | None = None
    error_kind: str | None = Field(default=None, alias="errorKind")
    remediation: dict[str, Any] | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")

    @classmethod
    def from_job(
        cls,
        job: GenerationJob,
        *,
        result_url: str | None = None,
        already_completed: bool | None = None,
    ) -> "GenerationResponse":
        handle = job.handle.as_dict()
        return cls(
            job_id=job.id,
            status=JobStatus.PROCESSING if job.status == JobStatus.QUEUED else job.status,
            model_id=job.model_id,
            requested_model=job.requested_model,
            media_kind=job.media_kind,
            handle=HandleModel(**handle) if handle else None,
            credits_reserved=job.credits_reserved,
            result_url=result_url,
            result_locator=job.result_locator,
            fallback_reason=job.fallback_reason,
            already_completed=already_completed or None,
            error=job.error_message,
            error_kind=job.error_kind.value if job.error_kind else None,
            remediation=job.error_remediation,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )

    @classmethod
    def from_result(cls, result: GenerationResult) -> "GenerationResponse":
        return cls.from_job(
            result.job,
            result_url=result.result_url,
            already_completed=result.already_completed,
        )


class GenerationListResponse(_CamelModel):
    items: list[GenerationResponse]


class CreditsResponse(_CamelModel):
    account_id: str = Field(alias="accountId")
    balance: int
    reserved: int
    available: int


class ModelRouteResponse(_CamelModel):
    model_id: str = Field(alias="modelId")
    display_name: str = Field(alias="displayName")
    provider: str
    media_kind: str = Field(default="video", alias="mediaKind")
    premium: bool
    fallback_model_id: str | None = Field(default=None, alias="fallbackModelId")
    aliases: list[str] = Field(default_factory=list)
    cost: int
    is_default: bool = Field(alias="isDefault")
