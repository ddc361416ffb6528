"""Status reconciliation with bucket fallback.

Each poll re-enters a small state machine:

* operation handle and location hint: ask the provider first. An explicit
  failure is final, a running operation waits for the next poll, and both a
  success and an ambiguous answer fall through to the bucket check. The
  bucket is the source of truth for operation-based output.
* location hint only: go straight to the bucket check.
* task-id handles: the provider answer is authoritative; anything without a
  download reference counts as running.
* synchronous providers: nothing to ask; the job completes during submit.

Determinations are read-only. State is only written when a job fails or
when the completion claim is attempted.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..credits.credit_ledger import CreditLedger
from ..providers.providers_base import (
    DoneFailure,
    DoneSuccess,
    ProviderClient,
    Running,
    Unknown,
)
from ..repositories.generation_job_repository import GenerationJobRepository
from ..storage.output_scanner import ArtifactFound, BucketMissing, NotFoundYet, OutputScanner
from .completion_service import CompletionService
from .generation_models import (
    ArtifactSource,
    ErrorKind,
    GenerationJob,
    GenerationResult,
    JobStatus,
    ProviderKind,
    pending_view,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StillRunning:
    reason: str = ""


@dataclass(frozen=True, slots=True)
class Succeeded:
    artifact: ArtifactSource


@dataclass(frozen=True, slots=True)
class Failed:
    kind: ErrorKind
    message: str
    remediation: dict[str, Any] | None = None


Determination = StillRunning | Succeeded | Failed


@dataclass(slots=True)
class ReconcileService:
    job_repo: GenerationJobRepository
    providers: Mapping[ProviderKind, ProviderClient]
    scanner: OutputScanner
    completion: CompletionService
    ledger: CreditLedger
    log: logging.Logger = field(default_factory=lambda: logger)

    async def poll(self, job_id: str) -> GenerationResult:
        """Advance a job as far as current evidence allows and report it."""
        job = self.job_repo.get(job_id)
        if job.is_terminal:
            return await self._stored_result(job)
        if job.status == JobStatus.QUEUED:
            # Submission still in flight; the handle is not recorded yet.
            return GenerationResult(job=pending_view(job))

        determination = await self.determine(job)

        if isinstance(determination, StillRunning):
            self.log.info(
                "reconcile.running",
                extra={"job_id": job.id, "reason": determination.reason},
            )
            return GenerationResult(job=job)

        if isinstance(determination, Failed):
            return await self._fail(job, determination)

        outcome = await self.completion.complete(job, determination.artifact)
        return GenerationResult(
            job=outcome.job,
            result_url=outcome.result_url,
            already_completed=not outcome.performed and outcome.job.status == JobStatus.COMPLETED,
        )

    async def determine(self, job: GenerationJob) -> Determination:
        if job.provider == ProviderKind.SYNCHRONOUS:
            # The artifact only ever arrives with the submit response.
            return StillRunning("synchronous result not recorded")
        provider = self.providers[job.provider]
        if job.provider == ProviderKind.TASK_ID:
            return await self._task_check(provider, job)

        operation_name = job.handle.operation_name
        hint = job.location_hint
        if operation_name and hint:
            return await self._operation_check(provider, job, hint)
        if hint:
            return await self._bucket_check(job, hint)
        if operation_name:
            return await self._operation_only(provider, job)
        return StillRunning("no operation handle or location hint")

    async def _operation_check(
        self, provider: ProviderClient, job: GenerationJob, hint: str
    ) -> Determination:
        status = await provider.check_status(job.handle)
        if isinstance(status, DoneFailure):
            return Failed(kind=ErrorKind.PROVIDER_FAILURE, message=status.message)
        if isinstance(status, Running):
            return StillRunning("operation running")
        if isinstance(status, Unknown):
            self.log.info(
                "reconcile.operation.ambiguous",
                extra={"job_id": job.id, "reason": status.reason},
            )
        return await self._bucket_check(job, hint)

    async def _operation_only(self, provider: ProviderClient, job: GenerationJob) -> Determination:
        status = await provider.check_status(job.handle)
        if isinstance(status, DoneFailure):
            return Failed(kind=ErrorKind.PROVIDER_FAILURE, message=status.message)
        if isinstance(status, DoneSuccess) and status.artifact is not None:
            return Succeeded(status.artifact)
        return StillRunning("operation not finished")

    async def _bucket_check(self, job: GenerationJob, hint: str) -> Determination:
        result = await self.scanner.scan(hint)
        if isinstance(result, BucketMissing):
            self.log.error(
                "reconcile.bucket.missing",
                extra={"job_id": job.id, "bucket": result.bucket},
            )
            return Failed(
                kind=ErrorKind.STORAGE_CONFIGURATION,
                message=result.message,
                remediation=result.remediation(),
            )
        if isinstance(result, NotFoundYet):
            return StillRunning(result.reason)
        if isinstance(result, ArtifactFound):
            return Succeeded(
                ArtifactSource(
                    mime_type=result.mime_type,
                    uri=result.locator,
                    access_url=result.access_url,
                )
            )
        raise TypeError(f"Unexpected scan result {result!r}")

    async def _task_check(self, provider: ProviderClient, job: GenerationJob) -> Determination:
        status = await provider.check_status(job.handle)
        if isinstance(status, DoneSuccess) and status.artifact is not None and status.artifact.uri:
            return Succeeded(status.artifact)
        if isinstance(status, DoneFailure):
            return Failed(kind=ErrorKind.PROVIDER_FAILURE, message=status.message)
        return StillRunning("task not finished")

    async def _fail(self, job: GenerationJob, failure: Failed) -> GenerationResult:
        applied = self.job_repo.fail(
            job.id,
            kind=failure.kind,
            message=failure.message,
            remediation=failure.remediation,
            statuses=(JobStatus.PROCESSING.value,),
        )
        current = self.job_repo.get(job.id)
        if not applied:
            self.log.info(
                "reconcile.fail.superseded",
                extra={"job_id": job.id, "status": current.status.value},
            )
            return await self._stored_result(current)
        self.ledger.release(job.id)
        self.log.warning(
            "reconcile.failed",
            extra={"job_id": job.id, "error_kind": failure.kind.value},
        )
        return GenerationResult(job=current)

    async def _stored_result(self, job: GenerationJob) -> GenerationResult:
        reported, result_url = await self.completion.view(job)
        return GenerationResult(
            job=reported,
            result_url=result_url,
            already_completed=reported.status == JobStatus.COMPLETED,
        )
