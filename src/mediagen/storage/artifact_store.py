"""Owned durable storage for finished artifacts."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from urllib.parse import quote

import httpx
from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions
from starlette.concurrency import run_in_threadpool

from ..config import SIGNED_URL_TTL
from ..generation.generation_errors import StorageError
from ..generation.generation_models import ArtifactSource
from .locators import format_locator, is_locator, locator_from_storage_url, parse_locator

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


@dataclass(frozen=True, slots=True)
class StoredArtifact:
    locator: str
    mime_type: str
    size_bytes: int


@dataclass(slots=True)
class ArtifactStore:
    """Results bucket keyed deterministically by job id."""

    client: Any
    bucket: str
    prefix: str = "generations"
    signed_url_ttl: timedelta = SIGNED_URL_TTL
    emulator_endpoint: str | None = None
    download_timeout_seconds: float = 60.0
    log: logging.Logger = field(default_factory=lambda: logger)

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValueError("Results bucket name is required")

    def key_for(self, job_id: str, mime_type: str) -> str:
        extension = _EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ".bin"
        prefix = self.prefix.strip("/")
        key = f"{job_id}/artifact{extension}"
        return f"{prefix}/{key}" if prefix else key

    def locator_for(self, job_id: str, mime_type: str) -> str:
        return format_locator(self.bucket, self.key_for(job_id, mime_type))

    async def put(self, job_id: str, data: bytes, mime_type: str) -> StoredArtifact:
        key = self.key_for(job_id, mime_type)
        blob = self.client.bucket(self.bucket).blob(key)
        try:
            await run_in_threadpool(blob.upload_from_string, data, content_type=mime_type)
        except (gcs_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError, OSError) as exc:
            raise StorageError(f"Upload to owned storage failed: {exc}") from exc
        locator = format_locator(self.bucket, key)
        self.log.info(
            "storage.artifact.stored",
            extra={"job_id": job_id, "locator": locator, "size_bytes": len(data)},
        )
        return StoredArtifact(locator=locator, mime_type=mime_type, size_bytes=len(data))

    async def read_source(self, source: ArtifactSource) -> bytes:
        """Return the artifact bytes from inline data, a bucket object or a URL."""
        if source.data is not None:
            return source.data
        if not source.uri:
            raise StorageError("Artifact source carries neither data nor a locator")

        locator = source.uri if is_locator(source.uri) else locator_from_storage_url(source.uri)
        if locator:
            return await self._download_object(locator)
        return await self._download_url(source.uri)

    async def access_url(self, locator: str) -> str:
        """Mint a short-lived URL for a stored artifact."""
        target = parse_locator(locator)
        if self.emulator_endpoint:
            return (
                f"{self.emulator_endpoint}/download/storage/v1/b/{target.bucket}"
                f"/o/{quote(target.path, safe='')}?alt=media"
            )
        blob = self.client.bucket(target.bucket).blob(target.path)
        try:
            return await run_in_threadpool(
                blob.generate_signed_url,
                version="v4",
                expiration=self.signed_url_ttl,
                method="GET",
            )
        except (AttributeError, ValueError, auth_exceptions.GoogleAuthError) as exc:
            raise StorageError(f"Could not sign access URL: {exc}") from exc

    async def _download_object(self, locator: str) -> bytes:
        target = parse_locator(locator)
        blob = self.client.bucket(target.bucket).blob(target.path)
        try:
            return await run_in_threadpool(blob.download_as_bytes)
        except (gcs_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError, OSError) as exc:
            raise StorageError(f"Download of {locator} failed: {exc}") from exc

    async def _download_url(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.download_timeout_seconds, follow_redirects=True
            ) as client:
                response = await client.get(url)
        except httpx.InvalidURL as exc:
            raise StorageError(f"Download URL is malformed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"Download failed: {exc}") from exc
        if response.status_code >= 400:
            raise StorageError(f"Download failed with HTTP {response.status_code}")
        return response.content
