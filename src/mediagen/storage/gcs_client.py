"""Construction of the process-wide Cloud Storage client."""

from __future__ import annotations

import logging
import os
from urllib.parse import urlparse, urlunparse

from google.auth.credentials import AnonymousCredentials
from google.cloud import storage

from ..config import StorageSettings

logger = logging.getLogger(__name__)


def build_storage_client(settings: StorageSettings, *, project_id: str | None = None) -> storage.Client:
    """Create the storage client once at startup.

    Credential problems surface here instead of on the first scan.
    """
    if settings.emulator_host:
        endpoint = normalize_emulator_endpoint(settings.emulator_host)
        os.environ["GCS_STORAGE_EMULATOR_HOST"] = endpoint
        logger.info("storage.client.emulator", extra={"endpoint": endpoint})
        return storage.Client(
            project=project_id or "local-dev",
            credentials=AnonymousCredentials(),
            client_options={"api_endpoint": endpoint},
        )
    return storage.Client(project=project_id)


def normalize_emulator_endpoint(raw_endpoint: str) -> str:
    """Keep only scheme, host and port of the emulator address."""
    parsed = urlparse(raw_endpoint)
    if not parsed.scheme or not parsed.netloc:
        return raw_endpoint.rstrip("/")
    return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")
