"""Exactly-once completion of generation jobs.

The PROCESSING -> COMPLETED claim is taken before any side effect. Only the
caller that wins the claim copies the artifact into owned storage, writes
the catalog row and debits the ledger. Until that catalog row exists the
job is reported as processing, so nobody is handed a URL for an object the
winner has not written yet.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from ..credits.credit_ledger import CreditLedger
from ..exceptions import RepositoryError
from ..repositories.generation_job_repository import GenerationJobRepository
from ..repositories.media_artifact_repository import MediaArtifactRepository
from ..storage.artifact_store import ArtifactStore
from .generation_errors import InsufficientCreditsError, StorageError, sanitize_message
from .generation_models import ArtifactSource, GenerationJob, JobStatus, pending_view

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionResult:
    job: GenerationJob
    performed: bool
    result_url: str | None = None


@dataclass(slots=True)
class CompletionService:
    job_repo: GenerationJobRepository
    artifact_repo: MediaArtifactRepository
    ledger: CreditLedger
    store: ArtifactStore
    session_factory: Callable[[], Session]
    settle_timeout_seconds: float = 2.0
    settle_interval_seconds: float = 0.05
    log: logging.Logger = field(default_factory=lambda: logger)

    async def complete(self, job: GenerationJob, artifact: ArtifactSource) -> CompletionResult:
        locator = self.store.locator_for(job.id, artifact.mime_type)
        if not self.job_repo.claim_completion(job.id, result_locator=locator):
            current = self.job_repo.get(job.id)
            self.log.info(
                "completion.claim.lost",
                extra={"job_id": job.id, "status": current.status.value},
            )
            reported, result_url = await self.view(current, wait=True)
            return CompletionResult(job=reported, performed=False, result_url=result_url)

        self.log.info(
            "completion.claim.won",
            extra={"job_id": job.id, "source": artifact.describe(), "locator": locator},
        )
        try:
            data = await self.store.read_source(artifact)
            stored = await self.store.put(job.id, data, artifact.mime_type)
            with self.session_factory() as session:
                self.artifact_repo.add(
                    generation_id=job.id,
                    account_id=job.account_id,
                    storage_uri=stored.locator,
                    mime_type=stored.mime_type,
                    size_bytes=stored.size_bytes,
                    source_locator=artifact.uri,
                    session=session,
                )
                self.ledger.debit(job.id, job.account_id, job.credits_reserved, session=session)
                session.commit()
        except (
            StorageError,
            RepositoryError,
            InsufficientCreditsError,
            sa_exc.SQLAlchemyError,
        ) as exc:
            self._abandon_claim(job, exc)
            return CompletionResult(job=self.job_repo.get(job.id), performed=True)
        except Exception as exc:
            self._abandon_claim(job, exc)
            raise

        completed = self.job_repo.get(job.id)
        self.log.info(
            "completion.done",
            extra={"job_id": job.id, "locator": completed.result_locator, "size_bytes": stored.size_bytes},
        )
        return CompletionResult(
            job=completed,
            performed=True,
            result_url=await self.result_url(completed),
        )

    async def view(
        self, job: GenerationJob, *, wait: bool = False
    ) -> tuple[GenerationJob, str | None]:
        """Return the job as callers may see it, plus an access URL when completed.

        A COMPLETED job without its catalog row is still being finalized by the
        claim winner. With ``wait`` the winner gets ``settle_timeout_seconds``
        to finish before the job is reported as processing.
        """
        deadline = time.monotonic() + (self.settle_timeout_seconds if wait else 0.0)
        while True:
            if job.status == JobStatus.QUEUED:
                return pending_view(job), None
            if job.status != JobStatus.COMPLETED:
                return job, None
            if self.artifact_repo.get_for_job(job.id) is not None:
                return job, await self.result_url(job)
            if time.monotonic() >= deadline:
                return pending_view(job), None
            await asyncio.sleep(self.settle_interval_seconds)
            job = self.job_repo.get(job.id)

    async def result_url(self, job: GenerationJob) -> str | None:
        """Mint a fresh short-lived URL for a completed job's stable locator."""
        if job.status != JobStatus.COMPLETED or not job.result_locator:
            return None
        try:
            return await self.store.access_url(job.result_locator)
        except StorageError as exc:
            self.log.warning(
                "completion.access_url.failed",
                extra={"job_id": job.id, "error": str(exc)[:200]},
            )
            return None

    def _abandon_claim(self, job: GenerationJob, exc: Exception) -> None:
        message = sanitize_message(f"Artifact located but could not be stored: {exc}")
        self.log.error(
            "completion.side_effects.failed",
            extra={"job_id": job.id, "error": message, "error_type": type(exc).__name__},
        )
        self.job_repo.fail_after_claim(job.id, message=message)
        self.ledger.release(job.id)
