"""Persistence layer for generation jobs.

Every status transition is a conditional UPDATE guarded by the current
status, so concurrent callers race on the database row rather than on
in-process state. Methods return ``True`` only for the caller whose update
applied.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db.db_models import GenerationJobModel
from ..exceptions import ensure_found, handle_sqlalchemy_errors
from ..generation.generation_models import (
    ErrorKind,
    GenerationJob,
    JobStatus,
    ProviderHandle,
    ProviderKind,
)

_ACTIVE_STATUSES = (JobStatus.QUEUED.value, JobStatus.PROCESSING.value)


class GenerationJobRepository:
    """Manage generation_job records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create_queued(
        self,
        *,
        job_id: str,
        account_id: str,
        provider: ProviderKind,
        model_id: str,
        requested_model: str,
        prompt: str,
        parameters: dict[str, Any],
        credits_reserved: int,
        media_kind: str = "video",
    ) -> GenerationJob:
        now = datetime.utcnow()
        model = GenerationJobModel(
            id=job_id,
            account_id=account_id,
            provider=provider.value,
            model_id=model_id,
            requested_model=requested_model,
            media_kind=media_kind,
            prompt=prompt,
            parameters_json=json.dumps(parameters, sort_keys=True),
            status=JobStatus.QUEUED.value,
            credits_reserved=credits_reserved,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as session, handle_sqlalchemy_errors(entity="generation_job"):
            session.add(model)
            session.commit()
            return _to_domain(model)

    def mark_processing(
        self,
        job_id: str,
        *,
        handle: ProviderHandle,
        location_hint: str | None,
    ) -> bool:
        """Record the provider handle and advance QUEUED -> PROCESSING.

        The handle columns are only written while all of them are still empty.
        """
        stmt = (
            update(GenerationJobModel)
            .where(
                GenerationJobModel.id == job_id,
                GenerationJobModel.status == JobStatus.QUEUED.value,
                GenerationJobModel.operation_name.is_(None),
                GenerationJobModel.task_id.is_(None),
                GenerationJobModel.provider_job_id.is_(None),
            )
            .values(
                status=JobStatus.PROCESSING.value,
                operation_name=handle.operation_name,
                task_id=handle.task_id,
                provider_job_id=handle.provider_job_id,
                location_hint=location_hint,
                updated_at=datetime.utcnow(),
            )
        )
        return self._apply(stmt)

    def record_route(
        self,
        job_id: str,
        *,
        provider: ProviderKind,
        model_id: str,
        fallback_reason: str | None,
    ) -> bool:
        """Update the resolved route while the job is still QUEUED."""
        stmt = (
            update(GenerationJobModel)
            .where(
                GenerationJobModel.id == job_id,
                GenerationJobModel.status == JobStatus.QUEUED.value,
            )
            .values(
                provider=provider.value,
                model_id=model_id,
                fallback_reason=fallback_reason,
                updated_at=datetime.utcnow(),
            )
        )
        return self._apply(stmt)

    def claim_completion(self, job_id: str, *, result_locator: str) -> bool:
        """Atomically move PROCESSING -> COMPLETED; only one caller wins."""
        now = datetime.utcnow()
        stmt = (
            update(GenerationJobModel)
            .where(
                GenerationJobModel.id == job_id,
                GenerationJobModel.status == JobStatus.PROCESSING.value,
            )
            .values(
                status=JobStatus.COMPLETED.value,
                result_locator=result_locator,
                completed_at=now,
                updated_at=now,
            )
        )
        return self._apply(stmt)

    def fail(
        self,
        job_id: str,
        *,
        kind: ErrorKind,
        message: str,
        remediation: dict[str, Any] | None = None,
        statuses: Iterable[str] = _ACTIVE_STATUSES,
    ) -> bool:
        """Mark a non-terminal job FAILED."""
        now = datetime.utcnow()
        stmt = (
            update(GenerationJobModel)
            .where(
                GenerationJobModel.id == job_id,
                GenerationJobModel.status.in_(tuple(statuses)),
            )
            .values(
                status=JobStatus.FAILED.value,
                error_kind=kind.value,
                error_message=message,
                error_remediation_json=json.dumps(remediation) if remediation else None,
                completed_at=now,
                updated_at=now,
            )
        )
        return self._apply(stmt)

    def fail_after_claim(self, job_id: str, *, message: str) -> bool:
        """Turn a claimed completion whose side effects failed into FAILED."""
        now = datetime.utcnow()
        stmt = (
            update(GenerationJobModel)
            .where(
                GenerationJobModel.id == job_id,
                GenerationJobModel.status == JobStatus.COMPLETED.value,
            )
            .values(
                status=JobStatus.FAILED.value,
                error_kind=ErrorKind.POST_SUCCESS_STORAGE_FAILURE.value,
                error_message=message,
                result_locator=None,
                completed_at=now,
                updated_at=now,
            )
        )
        return self._apply(stmt)

    def get(self, job_id: str) -> GenerationJob:
        with self._session_factory() as session:
            model = session.get(GenerationJobModel, job_id)
            ensure_found(model, entity="generation_job", identifier=job_id)
            return _to_domain(model)

    def list_recent(self, account_id: str, *, limit: int = 20) -> list[GenerationJob]:
        with self._session_factory() as session:
            stmt = (
                select(GenerationJobModel)
                .where(GenerationJobModel.account_id == account_id)
                .order_by(GenerationJobModel.created_at.desc())
                .limit(limit)
            )
            return [_to_domain(model) for model in session.scalars(stmt)]

    def _apply(self, stmt) -> bool:
        with self._session_factory() as session, handle_sqlalchemy_errors(entity="generation_job"):
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1


def _to_domain(model: GenerationJobModel) -> GenerationJob:
    return GenerationJob(
        id=model.id,
        account_id=model.account_id,
        provider=ProviderKind(model.provider),
        model_id=model.model_id,
        requested_model=model.requested_model,
        media_kind=model.media_kind,
        prompt=model.prompt,
        parameters=json.loads(model.parameters_json or "{}"),
        status=JobStatus(model.status),
        handle=ProviderHandle(
            operation_name=model.operation_name,
            task_id=model.task_id,
            provider_job_id=model.provider_job_id,
        ),
        location_hint=model.location_hint,
        result_locator=model.result_locator,
        credits_reserved=model.credits_reserved,
        error_kind=ErrorKind(model.error_kind) if model.error_kind else None,
        error_message=model.error_message,
        error_remediation=(
            json.loads(model.error_remediation_json) if model.error_remediation_json else None
        ),
        fallback_reason=model.fallback_reason,
        created_at=model.created_at,
        updated_at=model.updated_at,
        completed_at=model.completed_at,
    )
