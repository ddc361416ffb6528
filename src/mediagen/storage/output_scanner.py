"""Fallback scanner over the provider's output bucket.

When the provider status API cannot be trusted, the bucket the provider
writes into is inspected directly. Listing order is the order the storage
API returns, which for Cloud Storage is lexicographic by object name; the
first object with a recognized artifact extension wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions
from requests import exceptions as requests_exceptions
from starlette.concurrency import run_in_threadpool

from ..config import SIGNED_URL_TTL
from .locators import format_locator, parse_locator

logger = logging.getLogger(__name__)

ARTIFACT_EXTENSIONS: dict[str, str] = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
}


@dataclass(frozen=True, slots=True)
class ArtifactFound:
    locator: str
    object_name: str
    mime_type: str
    size_bytes: int | None = None
    access_url: str | None = None


@dataclass(frozen=True, slots=True)
class NotFoundYet:
    reason: str = "no artifact under prefix yet"


@dataclass(frozen=True, slots=True)
class BucketMissing:
    bucket: str
    region: str
    storage_class: str

    @property
    def message(self) -> str:
        return f"Storage container not found: '{self.bucket}'"

    def remediation(self) -> dict[str, str]:
        return {
            "container": self.bucket,
            "region": self.region,
            "class": self.storage_class,
            "action": (
                f"Create bucket '{self.bucket}' in {self.region} with storage class "
                f"{self.storage_class} and grant the generation service account write access"
            ),
        }


ScanResult = ArtifactFound | NotFoundYet | BucketMissing


@dataclass(slots=True)
class OutputScanner:
    """List a ``gs://bucket/prefix`` hint and pick the first artifact."""

    client: Any
    expected_region: str = "us-central1"
    expected_class: str = "STANDARD"
    timeout_seconds: float = 15.0
    signed_url_ttl: timedelta = SIGNED_URL_TTL
    extensions: dict[str, str] = field(default_factory=lambda: dict(ARTIFACT_EXTENSIONS))
    log: logging.Logger = field(default_factory=lambda: logger)

    async def scan(self, location_hint: str) -> ScanResult:
        try:
            target = parse_locator(location_hint)
        except ValueError:
            self.log.warning("scanner.hint.invalid", extra={"location_hint": location_hint})
            return NotFoundYet(reason="location hint is not a storage locator")

        try:
            blobs = await run_in_threadpool(self._list, target.bucket, target.path)
        except gcs_exceptions.NotFound:
            self.log.error(
                "scanner.bucket.missing",
                extra={"bucket": target.bucket, "region": self.expected_region},
            )
            return BucketMissing(
                bucket=target.bucket,
                region=self.expected_region,
                storage_class=self.expected_class,
            )
        except requests_exceptions.Timeout:
            self.log.warning("scanner.list.timeout", extra={"location_hint": location_hint})
            return NotFoundYet(reason="listing timed out")
        except (gcs_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError, OSError) as exc:
            self.log.warning(
                "scanner.list.error",
                extra={"location_hint": location_hint, "error": str(exc)[:200]},
            )
            return NotFoundYet(reason="listing failed")

        for blob in blobs:
            mime_type = self._match(blob.name)
            if mime_type is None:
                continue
            locator = format_locator(target.bucket, blob.name)
            access_url = await self._sign(blob)
            self.log.info(
                "scanner.artifact.found",
                extra={"locator": locator, "candidates": len(blobs)},
            )
            return ArtifactFound(
                locator=locator,
                object_name=blob.name,
                mime_type=mime_type,
                size_bytes=getattr(blob, "size", None),
                access_url=access_url,
            )

        return NotFoundYet()

    def _list(self, bucket: str, prefix: str) -> list[Any]:
        # Each listing request gives up after timeout_seconds.
        return list(
            self.client.list_blobs(bucket, prefix=prefix or None, timeout=self.timeout_seconds)
        )

    def _match(self, name: str) -> str | None:
        if not name or name.endswith("/"):
            return None
        lowered = name.lower()
        for extension, mime_type in self.extensions.items():
            if lowered.endswith(extension):
                return mime_type
        return None

    async def _sign(self, blob: Any) -> str | None:
        try:
            return await run_in_threadpool(
                blob.generate_signed_url,
                version="v4",
                expiration=self.signed_url_ttl,
                method="GET",
            )
        # Credentials without a private key raise AttributeError from the signer.
        except (AttributeError, ValueError, auth_exceptions.GoogleAuthError) as exc:
            self.log.warning("scanner.sign.failed", extra={"object": blob.name, "error": str(exc)[:200]})
            return None
