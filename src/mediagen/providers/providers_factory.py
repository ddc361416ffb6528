"""Factory for provider clients."""

from ..config import ProviderSettings, StorageSettings
from ..generation.generation_models import ProviderKind
from .providers_base import ProviderClient
from .providers_seedance import SeedanceProvider
from .providers_imagen import ImagenProvider
from .providers_veo import VeoProvider


def create_provider(
    kind: ProviderKind | str,
    *,
    providers: ProviderSettings,
    storage: StorageSettings,
) -> ProviderClient:
    """Instantiate provider client by kind."""
    lower = str(kind).lower()
    if lower == ProviderKind.OPERATION_BASED:
        return VeoProvider(
            project_id=providers.project_id,
            location=providers.location,
            output_bucket=storage.veo_output_bucket,
            output_prefix=storage.veo_output_prefix,
            timeout_seconds=providers.submit_timeout_seconds,
            status_timeout_seconds=providers.status_timeout_seconds,
        )
    if lower == ProviderKind.TASK_ID:
        return SeedanceProvider(
            endpoint=providers.byteplus_endpoint,
            api_key=providers.byteplus_api_key,
            timeout_seconds=providers.submit_timeout_seconds,
            status_timeout_seconds=providers.status_timeout_seconds,
        )
    if lower == ProviderKind.SYNCHRONOUS:
        return ImagenProvider(
            project_id=providers.project_id,
            location=providers.location,
            timeout_seconds=providers.submit_timeout_seconds,
        )
    raise ValueError(f"Unsupported provider '{kind}'")


def build_providers(
    providers: ProviderSettings, storage: StorageSettings
) -> dict[ProviderKind, ProviderClient]:
    return {
        kind: create_provider(kind, providers=providers, storage=storage) for kind in ProviderKind
    }
