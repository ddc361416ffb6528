"""Stable storage locators (``gs://bucket/path``) and their conversions."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote, urlparse

GCS_SCHEME = "gs"
_STORAGE_HOSTS = ("storage.googleapis.com", "storage.cloud.google.com")


@dataclass(frozen=True, slots=True)
class StorageLocator:
    bucket: str
    path: str = ""

    def __str__(self) -> str:
        return format_locator(self.bucket, self.path)


def format_locator(bucket: str, path: str = "") -> str:
    path = path.lstrip("/")
    return f"{GCS_SCHEME}://{bucket}/{path}" if path else f"{GCS_SCHEME}://{bucket}"


def parse_locator(value: str) -> StorageLocator:
    """Split ``gs://bucket/prefix`` into bucket and object path."""
    parsed = urlparse(value.strip())
    if parsed.scheme != GCS_SCHEME or not parsed.netloc:
        raise ValueError(f"Not a storage locator: {value!r}")
    return StorageLocator(bucket=parsed.netloc, path=parsed.path.lstrip("/"))


def is_locator(value: str | None) -> bool:
    return bool(value) and value.startswith(f"{GCS_SCHEME}://")


def locator_from_storage_url(url: str) -> str | None:
    """Turn a (possibly signed) storage.googleapis.com URL into a stable locator.

    Query parameters such as signatures are dropped. Returns ``None`` for URLs
    that do not point at Cloud Storage.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or parsed.netloc not in _STORAGE_HOSTS:
        return None
    bucket, _, path = unquote(parsed.path).lstrip("/").partition("/")
    if not bucket or not path:
        return None
    return format_locator(bucket, path)
