"""Dependency wiring helpers."""

from fastapi import FastAPI

from .config import AppConfig
from .credits.credit_ledger import CreditLedger
from .generation.completion_service import CompletionService
from .generation.dispatch_service import DispatchService
from .generation.generation_api import router as generation_router
from .generation.model_routing import ModelRouter
from .generation.reconcile_service import ReconcileService
from .providers.providers_base import ProviderClient
from .providers.providers_factory import build_providers
from .repositories.generation_job_repository import GenerationJobRepository
from .repositories.media_artifact_repository import MediaArtifactRepository
from .storage.artifact_store import ArtifactStore
from .storage.gcs_client import build_storage_client, normalize_emulator_endpoint
from .storage.output_scanner import OutputScanner


def include_routers(
    app: FastAPI,
    config: AppConfig,
    *,
    providers: dict | None = None,
) -> None:
    """Mount module routers and attach services."""
    storage_client = config.storage_client or build_storage_client(
        config.storage, project_id=config.providers.project_id
    )
    provider_clients: dict[object, ProviderClient] = providers or build_providers(
        config.providers, config.storage
    )

    job_repo = GenerationJobRepository(config.session_factory)
    artifact_repo = MediaArtifactRepository(config.session_factory)
    ledger = CreditLedger(config.session_factory)
    model_router = ModelRouter(default_model_id=config.providers.default_model_alias)

    store = ArtifactStore(
        client=storage_client,
        bucket=config.storage.results_bucket,
        prefix=config.storage.results_prefix,
        signed_url_ttl=config.storage.signed_url_ttl,
        emulator_endpoint=(
            normalize_emulator_endpoint(config.storage.emulator_host)
            if config.storage.emulator_host
            else None
        ),
    )
    scanner = OutputScanner(
        client=storage_client,
        expected_region=config.storage.veo_output_region,
        expected_class=config.storage.veo_output_class,
        timeout_seconds=config.storage.scan_timeout_seconds,
        signed_url_ttl=config.storage.signed_url_ttl,
    )
    completion_service = CompletionService(
        job_repo=job_repo,
        artifact_repo=artifact_repo,
        ledger=ledger,
        store=store,
        session_factory=config.session_factory,
    )
    dispatch_service = DispatchService(
        job_repo=job_repo,
        ledger=ledger,
        router=model_router,
        providers=provider_clients,
        completion=completion_service,
        generation_cost=config.credits.video_generation_cost,
        image_generation_cost=config.credits.image_generation_cost,
        charge_policy=config.credits.charge_policy,
    )
    reconcile_service = ReconcileService(
        job_repo=job_repo,
        providers=provider_clients,
        scanner=scanner,
        completion=completion_service,
        ledger=ledger,
    )

    app.state.config = config
    app.state.storage_client = storage_client
    app.state.job_repo = job_repo
    app.state.artifact_repo = artifact_repo
    app.state.credit_ledger = ledger
    app.state.model_router = model_router
    app.state.artifact_store = store
    app.state.completion_service = completion_service
    app.state.dispatch_service = dispatch_service
    app.state.reconcile_service = reconcile_service

    app.include_router(generation_router)
