from __future__ import annotations

import pytest

from mediagen.exceptions import NotFoundError
from mediagen.generation.generation_models import (
    ErrorKind,
    JobStatus,
    ProviderHandle,
    ProviderKind,
)
from mediagen.repositories.generation_job_repository import GenerationJobRepository


def _queued(repo: GenerationJobRepository, job_id: str = "job-1", account_id: str = "acct"):
    return repo.create_queued(
        job_id=job_id,
        account_id=account_id,
        provider=ProviderKind.OPERATION_BASED,
        model_id="veo-2.0-generate-001",
        requested_model="Veo 2",
        prompt="sunrise over the bay",
        parameters={"duration": 8, "hasReferenceImage": True},
        credits_reserved=5,
    )


def test_create_queued_roundtrips_fields(job_repo: GenerationJobRepository) -> None:
    created = _queued(job_repo)

    job = job_repo.get(created.id)
    assert job.status == JobStatus.QUEUED
    assert job.provider == ProviderKind.OPERATION_BASED
    assert job.requested_model == "Veo 2"
    assert job.parameters == {"duration": 8, "hasReferenceImage": True}
    assert job.handle.is_empty
    assert job.created_at is not None
    assert job.completed_at is None


def test_handle_is_write_once(job_repo: GenerationJobRepository) -> None:
    _queued(job_repo)
    first = ProviderHandle(operation_name="projects/p/operations/a", provider_job_id="a")

    assert job_repo.mark_processing("job-1", handle=first, location_hint="gs://veo-out/x/job-1")
    assert not job_repo.mark_processing(
        "job-1", handle=ProviderHandle(task_id="other"), location_hint=None
    )

    job = job_repo.get("job-1")
    assert job.status == JobStatus.PROCESSING
    assert job.handle == first
    assert job.location_hint == "gs://veo-out/x/job-1"


def test_record_route_only_while_queued(job_repo: GenerationJobRepository) -> None:
    _queued(job_repo)

    assert job_repo.record_route(
        "job-1",
        provider=ProviderKind.OPERATION_BASED,
        model_id="veo-2.0-generate-001",
        fallback_reason="premium_model_access_not_available",
    )
    job_repo.mark_processing("job-1", handle=ProviderHandle(task_id="t"), location_hint=None)
    assert not job_repo.record_route(
        "job-1", provider=ProviderKind.TASK_ID, model_id="seedance-1-0-pro-250528", fallback_reason=None
    )

    job = job_repo.get("job-1")
    assert job.fallback_reason == "premium_model_access_not_available"
    assert job.provider == ProviderKind.OPERATION_BASED


def test_claim_completion_has_single_winner(job_repo: GenerationJobRepository) -> None:
    _queued(job_repo)
    job_repo.mark_processing("job-1", handle=ProviderHandle(task_id="t"), location_hint=None)

    assert job_repo.claim_completion("job-1", result_locator="gs://results/a.mp4") is True
    assert job_repo.claim_completion("job-1", result_locator="gs://results/b.mp4") is False

    job = job_repo.get("job-1")
    assert job.status == JobStatus.COMPLETED
    assert job.result_locator == "gs://results/a.mp4"
    assert job.completed_at is not None


def test_claim_requires_processing(job_repo: GenerationJobRepository) -> None:
    _queued(job_repo)

    assert job_repo.claim_completion("job-1", result_locator="gs://results/a.mp4") is False
    assert job_repo.get("job-1").status == JobStatus.QUEUED


def test_fail_does_not_touch_terminal_jobs(job_repo: GenerationJobRepository) -> None:
    _queued(job_repo)
    job_repo.mark_processing("job-1", handle=ProviderHandle(task_id="t"), location_hint=None)
    job_repo.claim_completion("job-1", result_locator="gs://results/a.mp4")

    assert not job_repo.fail("job-1", kind=ErrorKind.PROVIDER_FAILURE, message="late failure")

    job = job_repo.get("job-1")
    assert job.status == JobStatus.COMPLETED
    assert job.error_kind is None


def test_fail_stores_remediation(job_repo: GenerationJobRepository) -> None:
    _queued(job_repo)
    remediation = {"container": "veo-out", "region": "us-central1", "class": "STANDARD"}

    assert job_repo.fail(
        "job-1",
        kind=ErrorKind.STORAGE_CONFIGURATION,
        message="Storage container not found: 'veo-out'",
        remediation=remediation,
    )

    job = job_repo.get("job-1")
    assert job.status == JobStatus.FAILED
    assert job.error_kind == ErrorKind.STORAGE_CONFIGURATION
    assert job.error_remediation == remediation


def test_fail_after_claim_clears_locator(job_repo: GenerationJobRepository) -> None:
    _queued(job_repo)
    job_repo.mark_processing("job-1", handle=ProviderHandle(task_id="t"), location_hint=None)
    job_repo.claim_completion("job-1", result_locator="gs://results/a.mp4")

    assert job_repo.fail_after_claim("job-1", message="upload failed")
    assert not job_repo.fail_after_claim("job-1", message="upload failed")

    job = job_repo.get("job-1")
    assert job.status == JobStatus.FAILED
    assert job.error_kind == ErrorKind.POST_SUCCESS_STORAGE_FAILURE
    assert job.result_locator is None


def test_get_missing_job_raises(job_repo: GenerationJobRepository) -> None:
    with pytest.raises(NotFoundError):
        job_repo.get("missing")


def test_list_recent_filters_by_account_and_limits(job_repo: GenerationJobRepository) -> None:
    for index in range(4):
        _queued(job_repo, job_id=f"job-{index}")
    _queued(job_repo, job_id="other", account_id="someone-else")

    jobs = job_repo.list_recent("acct", limit=3)

    assert len(jobs) == 3
    assert all(job.account_id == "acct" for job in jobs)
