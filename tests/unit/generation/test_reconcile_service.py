from __future__ import annotations

import pytest

from mediagen.credits.credit_ledger import RELEASE, RESERVE
from mediagen.exceptions import NotFoundError
from mediagen.generation.generation_models import (
    ArtifactSource,
    ErrorKind,
    JobStatus,
    ProviderHandle,
    ProviderKind,
)
from mediagen.generation.reconcile_service import ReconcileService, StillRunning
from mediagen.providers.providers_base import DoneFailure, DoneSuccess, Running, Unknown

OPERATION = "projects/proj/locations/us-central1/publishers/google/models/veo-2.0-generate-001/operations/op-1"


def _operation_job(make_job, *, hint: bool = True, operation: bool = True):
    job_id = "job-op"
    return make_job(
        job_id=job_id,
        handle=ProviderHandle(operation_name=OPERATION, provider_job_id="op-1") if operation else None,
        location_hint=f"gs://veo-out/video-outputs/{job_id}" if hint else None,
    )


@pytest.mark.asyncio
async def test_running_operation_stays_processing(
    reconcile: ReconcileService, make_job, veo_provider, storage_client
) -> None:
    veo_provider.statuses = [Running()]
    job = _operation_job(make_job)
    storage_client.put("veo-out", f"video-outputs/{job.id}/sample_0.mp4")

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.PROCESSING
    assert storage_client.list_calls == []


@pytest.mark.asyncio
async def test_provider_failure_is_terminal_and_releases_hold(
    reconcile: ReconcileService, make_job, veo_provider, funded_ledger
) -> None:
    veo_provider.statuses = [DoneFailure("Prompt violates usage guidelines")]
    job = _operation_job(make_job)

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.FAILED
    assert result.job.error_kind == ErrorKind.PROVIDER_FAILURE
    assert result.job.error_message == "Prompt violates usage guidelines"
    kinds = sorted(entry.kind for entry in funded_ledger.entries_for_job(job.id))
    assert kinds == [RELEASE, RESERVE]


@pytest.mark.asyncio
async def test_status_404_falls_back_to_bucket(
    reconcile: ReconcileService, make_job, veo_provider, storage_client
) -> None:
    veo_provider.statuses = [Unknown("status check returned HTTP 404")]
    job = _operation_job(make_job)
    storage_client.put("veo-out", f"video-outputs/{job.id}/sample_0.mp4", b"found it")

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.COMPLETED
    assert result.job.result_locator == f"gs://results/generations/{job.id}/artifact.mp4"
    assert result.already_completed is False
    assert storage_client.read("results", f"generations/{job.id}/artifact.mp4") == b"found it"


@pytest.mark.asyncio
async def test_ambiguous_status_without_output_keeps_processing(
    reconcile: ReconcileService, make_job, veo_provider
) -> None:
    veo_provider.statuses = [Unknown("status check timed out")]
    job = _operation_job(make_job)

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.PROCESSING
    assert result.job.error_kind is None


@pytest.mark.asyncio
async def test_provider_success_is_confirmed_in_bucket(
    reconcile: ReconcileService, make_job, veo_provider, storage_client
) -> None:
    veo_provider.statuses = [DoneSuccess(None)]
    job = _operation_job(make_job)

    first = await reconcile.poll(job.id)
    assert first.job.status == JobStatus.PROCESSING

    storage_client.put("veo-out", f"video-outputs/{job.id}/sample_0.mp4")
    second = await reconcile.poll(job.id)
    assert second.job.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_hint_without_operation_goes_to_bucket(
    reconcile: ReconcileService, make_job, veo_provider, storage_client
) -> None:
    job = _operation_job(make_job, operation=False)
    storage_client.put("veo-out", f"video-outputs/{job.id}/clip.avi")

    result = await reconcile.poll(job.id)

    assert veo_provider.checked == []
    assert result.job.status == JobStatus.COMPLETED
    assert result.job.result_locator.endswith("/artifact.avi")


@pytest.mark.asyncio
async def test_operation_without_hint_uses_provider_artifact(
    reconcile: ReconcileService, make_job, veo_provider, storage_client
) -> None:
    storage_client.put("veo-out", "elsewhere/sample_0.mp4", b"provider gcs uri")
    veo_provider.statuses = [DoneSuccess(ArtifactSource(uri="gs://veo-out/elsewhere/sample_0.mp4"))]
    job = _operation_job(make_job, hint=False)

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.COMPLETED
    assert storage_client.list_calls == []


@pytest.mark.asyncio
async def test_operation_without_hint_and_ambiguous_status(
    reconcile: ReconcileService, make_job, veo_provider
) -> None:
    veo_provider.statuses = [Unknown("status check returned HTTP 403")]
    job = _operation_job(make_job, hint=False)

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_no_handle_and_no_hint_is_still_running(
    reconcile: ReconcileService, make_job, veo_provider
) -> None:
    job = make_job()

    determination = await reconcile.determine(job)
    result = await reconcile.poll(job.id)

    assert isinstance(determination, StillRunning)
    assert result.job.status == JobStatus.PROCESSING
    assert veo_provider.checked == []


@pytest.mark.asyncio
async def test_missing_output_bucket_fails_with_remediation(
    reconcile: ReconcileService, make_job, veo_provider
) -> None:
    veo_provider.statuses = [Unknown("status check returned HTTP 404")]
    job = make_job(
        handle=ProviderHandle(operation_name=OPERATION),
        location_hint="gs://deleted-bucket/video-outputs/job-x",
    )

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.FAILED
    assert result.job.error_kind == ErrorKind.STORAGE_CONFIGURATION
    assert "not found" in result.job.error_message
    assert result.job.error_remediation["container"] == "deleted-bucket"
    assert result.job.error_remediation["region"] == "us-central1"
    assert result.job.error_remediation["class"] == "STANDARD"


@pytest.mark.asyncio
async def test_task_success_downloads_artifact(
    reconcile: ReconcileService, make_job, seedance_provider, storage_client
) -> None:
    storage_client.put("byteplus-out", "task-1/video.mp4", b"seedance output")
    url = "https://storage.googleapis.com/byteplus-out/task-1/video.mp4?X-Goog-Signature=provider"
    seedance_provider.statuses = [DoneSuccess(ArtifactSource(uri=url))]
    job = make_job(provider=ProviderKind.TASK_ID, handle=ProviderHandle(task_id="task-1"))

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.COMPLETED
    assert storage_client.read("results", f"generations/{job.id}/artifact.mp4") == b"seedance output"


@pytest.mark.asyncio
async def test_task_without_download_reference_is_running(
    reconcile: ReconcileService, make_job, seedance_provider
) -> None:
    seedance_provider.statuses = [DoneSuccess(None)]
    job = make_job(provider=ProviderKind.TASK_ID, handle=ProviderHandle(task_id="task-1"))

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_task_unknown_never_scans_bucket(
    reconcile: ReconcileService, make_job, seedance_provider, storage_client
) -> None:
    seedance_provider.statuses = [Unknown("status check returned HTTP 500")]
    job = make_job(
        provider=ProviderKind.TASK_ID,
        handle=ProviderHandle(task_id="task-1"),
        location_hint="gs://veo-out/video-outputs/unrelated",
    )

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.PROCESSING
    assert storage_client.list_calls == []


@pytest.mark.asyncio
async def test_task_failure_is_terminal(
    reconcile: ReconcileService, make_job, seedance_provider
) -> None:
    seedance_provider.statuses = [DoneFailure("Sensitive content detected")]
    job = make_job(provider=ProviderKind.TASK_ID, handle=ProviderHandle(task_id="task-1"))

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.FAILED
    assert result.job.error_message == "Sensitive content detected"


@pytest.mark.asyncio
async def test_terminal_jobs_are_not_changed(
    reconcile: ReconcileService, make_job, veo_provider, storage_client
) -> None:
    job = _operation_job(make_job)
    storage_client.put("veo-out", f"video-outputs/{job.id}/sample_0.mp4")
    veo_provider.statuses = [Unknown("status check returned HTTP 404")]
    completed = await reconcile.poll(job.id)

    veo_provider.statuses = [DoneFailure("operation expired")]
    again = await reconcile.poll(job.id)

    assert again.job.status == JobStatus.COMPLETED
    assert again.job.result_locator == completed.job.result_locator
    assert again.already_completed is True
    assert again.result_url == completed.result_url


@pytest.mark.asyncio
async def test_failed_jobs_stay_failed(
    reconcile: ReconcileService, make_job, veo_provider, storage_client
) -> None:
    veo_provider.statuses = [DoneFailure("quota exceeded")]
    job = _operation_job(make_job)
    await reconcile.poll(job.id)

    storage_client.put("veo-out", f"video-outputs/{job.id}/sample_0.mp4")
    veo_provider.statuses = [Unknown("status check returned HTTP 404")]
    again = await reconcile.poll(job.id)

    assert again.job.status == JobStatus.FAILED
    assert again.job.result_locator is None
    assert again.job.error_message == "quota exceeded"


@pytest.mark.asyncio
async def test_queued_job_is_reported_without_provider_calls(
    reconcile: ReconcileService, job_repo, veo_provider
) -> None:
    job_repo.create_queued(
        job_id="job-q",
        account_id="acct-1",
        provider=ProviderKind.OPERATION_BASED,
        model_id="veo-2.0-generate-001",
        requested_model="veo-2.0-generate-001",
        prompt="still submitting",
        parameters={},
        credits_reserved=5,
    )

    result = await reconcile.poll("job-q")

    assert result.job.status == JobStatus.PROCESSING
    assert result.result_url is None
    assert job_repo.get("job-q").status == JobStatus.QUEUED
    assert veo_provider.checked == []


@pytest.mark.asyncio
async def test_synchronous_job_without_result_makes_no_provider_calls(
    reconcile: ReconcileService, make_job, imagen_provider
) -> None:
    job = make_job(provider=ProviderKind.SYNCHRONOUS, model_id="imagen-3.0-generate-001")

    result = await reconcile.poll(job.id)

    assert result.job.status == JobStatus.PROCESSING
    assert imagen_provider.checked == []


@pytest.mark.asyncio
async def test_claimed_job_is_processing_until_artifact_is_recorded(
    reconcile: ReconcileService, make_job, job_repo, artifact_repo, veo_provider
) -> None:
    job = _operation_job(make_job)
    locator = f"gs://results/generations/{job.id}/artifact.mp4"
    assert job_repo.claim_completion(job.id, result_locator=locator)

    pending = await reconcile.poll(job.id)

    assert pending.job.status == JobStatus.PROCESSING
    assert pending.job.result_locator is None
    assert pending.result_url is None
    assert pending.already_completed is False
    assert veo_provider.checked == []

    artifact_repo.add(
        generation_id=job.id,
        account_id=job.account_id,
        storage_uri=locator,
        mime_type="video/mp4",
        size_bytes=5,
        source_locator=None,
    )
    settled = await reconcile.poll(job.id)

    assert settled.job.status == JobStatus.COMPLETED
    assert settled.result_url is not None
    assert settled.already_completed is True


@pytest.mark.asyncio
async def test_unknown_job_raises(reconcile: ReconcileService) -> None:
    with pytest.raises(NotFoundError):
        await reconcile.poll("missing")
