"""Vertex AI Veo provider (long-running operation handles)."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import google.auth
import httpx
from google.auth import exceptions as auth_exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest
from starlette.concurrency import run_in_threadpool

from ..generation.generation_errors import (
    ProviderEntitlementError,
    ProviderError,
    sanitize_message,
)
from ..generation.generation_models import ArtifactSource, ProviderHandle, ProviderKind
from ..storage.locators import format_locator
from .providers_base import (
    DoneFailure,
    DoneSuccess,
    ProviderClient,
    RawStatus,
    Running,
    SubmitOutcome,
    SubmitRequest,
    Unknown,
    error_message,
    json_or_empty,
    split_image_data,
)

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
SUPPORTED_ASPECT_RATIOS = ("16:9", "9:16")
DEFAULT_DURATION_SECONDS = 8

TokenProvider = Callable[[], Awaitable[str]]


@dataclass(slots=True)
class GoogleAccessTokenProvider:
    """Fetch OAuth access tokens from application default credentials."""

    scopes: tuple[str, ...] = (CLOUD_PLATFORM_SCOPE,)
    _credentials: Any = None

    async def __call__(self) -> str:
        return await run_in_threadpool(self._refresh)

    def _refresh(self) -> str:
        if self._credentials is None:
            self._credentials, _ = google.auth.default(scopes=list(self.scopes))
        if not self._credentials.valid:
            self._credentials.refresh(GoogleAuthRequest())
        return self._credentials.token


@dataclass(slots=True)
class VeoProvider(ProviderClient):
    """Submit to ``predictLongRunning`` and poll the returned operation."""

    project_id: str | None
    location: str = "us-central1"
    output_bucket: str | None = None
    output_prefix: str = "video-outputs"
    token_provider: TokenProvider = field(default_factory=GoogleAccessTokenProvider)
    timeout_seconds: float = 30.0
    status_timeout_seconds: float = 15.0
    log: logging.Logger = field(default_factory=lambda: logger)
    kind: ProviderKind = ProviderKind.OPERATION_BASED

    def output_uri(self, job_id: str) -> str | None:
        if not self.output_bucket:
            return None
        prefix = self.output_prefix.strip("/")
        return format_locator(self.output_bucket, f"{prefix}/{job_id}" if prefix else job_id)

    async def submit(self, request: SubmitRequest) -> SubmitOutcome:
        if not self.project_id:
            raise ProviderError("Environment variable GOOGLE_CLOUD_PROJECT_ID is not set")

        storage_uri = self.output_uri(request.job_id)
        body = {
            "instances": [_build_instance(request)],
            "parameters": _build_parameters(request, storage_uri),
        }
        url = (
            f"https://{self.location}-aiplatform.googleapis.com/v1/projects/{self.project_id}"
            f"/locations/{self.location}/publishers/google/models/{request.model_id}:predictLongRunning"
        )
        headers = await self._headers(for_submit=True)

        self.log.info(
            "veo.submit.start",
            extra={"job_id": request.job_id, "model": request.model_id, "storage_uri": storage_uri},
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise ProviderError("Veo submit timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Veo submit failed: {exc}") from exc

        if response.status_code >= 400:
            text = response.text or ""
            self.log.warning(
                "veo.submit.rejected",
                extra={
                    "job_id": request.job_id,
                    "status_code": response.status_code,
                    "body": text[:300],
                },
            )
            message = error_message(response) or f"Vertex AI API error {response.status_code}"
            if response.status_code == 403 or "allowlist" in text.lower():
                raise ProviderEntitlementError(message, status_code=response.status_code)
            raise ProviderError(message, status_code=response.status_code)

        payload = json_or_empty(response)
        operation_name = payload.get("name")
        artifact = _prediction_artifact(payload.get("response") or payload)
        if not operation_name and artifact is None:
            raise ProviderError("Veo response carried neither an operation name nor a prediction")

        handle = ProviderHandle(
            operation_name=operation_name,
            provider_job_id=operation_name.rsplit("/", 1)[-1] if operation_name else None,
        )
        self.log.info(
            "veo.submit.accepted",
            extra={
                "job_id": request.job_id,
                "operation_name": operation_name,
                "inline_result": artifact is not None,
            },
        )
        return SubmitOutcome(handle=handle, location_hint=storage_uri, artifact=artifact)

    async def check_status(self, handle: ProviderHandle) -> RawStatus:
        operation_name = handle.operation_name
        if not operation_name:
            return Unknown("no operation name")
        location = _operation_location(operation_name) or self.location
        url = f"https://{location}-aiplatform.googleapis.com/v1/{operation_name}"

        try:
            headers = await self._headers()
        except ProviderError as exc:
            return Unknown(str(exc))

        try:
            async with httpx.AsyncClient(timeout=self.status_timeout_seconds) as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException:
            self.log.info("veo.status.timeout", extra={"operation_name": operation_name})
            return Unknown("status check timed out")
        except httpx.HTTPError as exc:
            self.log.info(
                "veo.status.transport_error",
                extra={"operation_name": operation_name, "error": str(exc)[:200]},
            )
            return Unknown("status check transport error")

        if response.status_code >= 300:
            self.log.info(
                "veo.status.unavailable",
                extra={"operation_name": operation_name, "status_code": response.status_code},
            )
            return Unknown(f"status check returned HTTP {response.status_code}")

        payload = json_or_empty(response)
        if not payload:
            return Unknown("status response was not JSON")
        return decode_operation(payload)

    async def _headers(self, *, for_submit: bool = False) -> dict[str, str]:
        try:
            token = await self.token_provider()
        except (auth_exceptions.GoogleAuthError, OSError) as exc:
            if for_submit:
                raise ProviderError(f"Could not obtain Google access token: {exc}") from exc
            raise ProviderError("access token unavailable") from exc
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


def decode_operation(payload: dict[str, Any]) -> RawStatus:
    """Normalize a Vertex AI operation body into a raw status."""
    if not payload.get("done"):
        return Running()
    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return DoneFailure(sanitize_message(message or "Operation failed"))
    return DoneSuccess(_prediction_artifact(payload.get("response") or {}))


def _prediction_artifact(response: dict[str, Any]) -> ArtifactSource | None:
    candidates = response.get("predictions") or response.get("videos") or []
    if not isinstance(candidates, list) or not candidates:
        return None
    first = candidates[0]
    if not isinstance(first, dict):
        return None
    mime_type = first.get("mimeType") or "video/mp4"
    encoded = first.get("bytesBase64Encoded")
    if encoded:
        try:
            return ArtifactSource(mime_type=mime_type, data=base64.b64decode(encoded))
        except (binascii.Error, ValueError):
            return None
    gcs_uri = first.get("gcsUri")
    if gcs_uri:
        return ArtifactSource(mime_type=mime_type, uri=gcs_uri)
    return None


def _build_instance(request: SubmitRequest) -> dict[str, Any]:
    instance: dict[str, Any] = {"prompt": request.prompt}
    reference_image = request.parameters.get("referenceImage")
    if reference_image:
        mime_type, payload = split_image_data(reference_image)
        instance["image"] = {"bytesBase64Encoded": payload, "mimeType": mime_type}
    return instance


def _build_parameters(request: SubmitRequest, storage_uri: str | None) -> dict[str, Any]:
    params = request.parameters
    aspect_ratio = params.get("aspectRatio")
    parameters: dict[str, Any] = {
        "durationSeconds": int(params.get("duration") or DEFAULT_DURATION_SECONDS),
        "aspectRatio": aspect_ratio if aspect_ratio in SUPPORTED_ASPECT_RATIOS else "16:9",
        "sampleCount": min(int(params.get("sampleCount") or 1), 4),
        "enhancePrompt": params.get("enhancePrompt", True) is not False,
        "personGeneration": "allow_adult",
    }
    if storage_uri:
        parameters["storageUri"] = storage_uri
    if params.get("seed") is not None:
        parameters["seed"] = params["seed"]
    if params.get("negativePrompt"):
        parameters["negativePrompt"] = params["negativePrompt"]
    if request.model_id.startswith("veo-3"):
        parameters["generateAudio"] = True
    return parameters


def _operation_location(operation_name: str) -> str | None:
    # projects/{project}/locations/{location}/...
    parts = operation_name.split("/")
    if len(parts) > 3 and parts[2] == "locations":
        return parts[3]
    return None

