from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mediagen.config import ChargePolicy
from mediagen.credits.credit_ledger import CreditLedger
from mediagen.db.db_models import Base
from mediagen.generation.completion_service import CompletionService
from mediagen.generation.dispatch_service import DispatchService
from mediagen.generation.generation_models import GenerationJob, ProviderHandle, ProviderKind
from mediagen.generation.model_routing import ModelRouter
from mediagen.generation.reconcile_service import ReconcileService
from mediagen.repositories.generation_job_repository import GenerationJobRepository
from mediagen.repositories.media_artifact_repository import MediaArtifactRepository
from mediagen.storage.artifact_store import ArtifactStore
from mediagen.storage.output_scanner import OutputScanner
from tests.helpers.fakes import FakeProvider, FakeStorageClient

ACCOUNT_ID = "acct-1"
GENERATION_COST = 5


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def storage_client() -> FakeStorageClient:
    return FakeStorageClient("veo-out", "results")


@pytest.fixture
def job_repo(session_factory) -> GenerationJobRepository:
    return GenerationJobRepository(session_factory)


@pytest.fixture
def artifact_repo(session_factory) -> MediaArtifactRepository:
    return MediaArtifactRepository(session_factory)


@pytest.fixture
def ledger(session_factory) -> CreditLedger:
    return CreditLedger(session_factory)


@pytest.fixture
def funded_ledger(ledger) -> CreditLedger:
    ledger.grant(ACCOUNT_ID, 20, "test funds")
    return ledger


@pytest.fixture
def store(storage_client) -> ArtifactStore:
    return ArtifactStore(client=storage_client, bucket="results", prefix="generations")


@pytest.fixture
def scanner(storage_client) -> OutputScanner:
    return OutputScanner(client=storage_client, expected_region="us-central1", expected_class="STANDARD")


@pytest.fixture
def completion(job_repo, artifact_repo, funded_ledger, store, session_factory) -> CompletionService:
    return CompletionService(
        job_repo=job_repo,
        artifact_repo=artifact_repo,
        ledger=funded_ledger,
        store=store,
        session_factory=session_factory,
    )


@pytest.fixture
def veo_provider() -> FakeProvider:
    return FakeProvider(ProviderKind.OPERATION_BASED)


@pytest.fixture
def seedance_provider() -> FakeProvider:
    return FakeProvider(ProviderKind.TASK_ID)


@pytest.fixture
def imagen_provider() -> FakeProvider:
    return FakeProvider(ProviderKind.SYNCHRONOUS)


@pytest.fixture
def providers(veo_provider, seedance_provider, imagen_provider) -> dict[ProviderKind, FakeProvider]:
    return {
        ProviderKind.OPERATION_BASED: veo_provider,
        ProviderKind.TASK_ID: seedance_provider,
        ProviderKind.SYNCHRONOUS: imagen_provider,
    }


@pytest.fixture
def reconcile(job_repo, providers, scanner, completion, funded_ledger) -> ReconcileService:
    return ReconcileService(
        job_repo=job_repo,
        providers=providers,
        scanner=scanner,
        completion=completion,
        ledger=funded_ledger,
    )


@pytest.fixture
def make_dispatch(job_repo, funded_ledger, providers, completion):
    def factory(charge_policy: ChargePolicy = ChargePolicy.ON_COMPLETION) -> DispatchService:
        return DispatchService(
            job_repo=job_repo,
            ledger=funded_ledger,
            router=ModelRouter(),
            providers=providers,
            completion=completion,
            generation_cost=GENERATION_COST,
            charge_policy=charge_policy,
        )

    return factory


@pytest.fixture
def make_job(job_repo, funded_ledger):
    """Create a job already advanced to PROCESSING with a held reservation."""

    counter = {"value": 0}

    def factory(
        *,
        provider: ProviderKind = ProviderKind.OPERATION_BASED,
        handle: ProviderHandle | None = None,
        location_hint: str | None = None,
        reserve: bool = True,
        **overrides: Any,
    ) -> GenerationJob:
        counter["value"] += 1
        job_id = overrides.pop("job_id", f"job-{counter['value']}")
        job_repo.create_queued(
            job_id=job_id,
            account_id=overrides.pop("account_id", ACCOUNT_ID),
            provider=provider,
            model_id=overrides.pop("model_id", "veo-2.0-generate-001"),
            requested_model=overrides.pop("requested_model", "veo-2.0-generate-001"),
            prompt=overrides.pop("prompt", "a red fox running through snow"),
            parameters=overrides.pop("parameters", {}),
            credits_reserved=overrides.pop("credits_reserved", GENERATION_COST),
        )
        if reserve:
            funded_ledger.reserve(job_id, ACCOUNT_ID, GENERATION_COST)
        job_repo.mark_processing(
            job_id,
            handle=handle or ProviderHandle(),
            location_hint=location_hint,
        )
        return job_repo.get(job_id)

    return factory
