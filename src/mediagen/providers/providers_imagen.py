"""Vertex AI Imagen provider (synchronous ``predict`` with inline bytes)."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from google.auth import exceptions as auth_exceptions

from ..generation.generation_errors import ProviderEntitlementError, ProviderError
from ..generation.generation_models import ArtifactSource, ProviderHandle, ProviderKind
from .providers_base import (
    ProviderClient,
    RawStatus,
    SubmitOutcome,
    SubmitRequest,
    Unknown,
    error_message,
    json_or_empty,
    split_image_data,
)
from .providers_veo import GoogleAccessTokenProvider, TokenProvider

logger = logging.getLogger(__name__)

SUPPORTED_ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4")


@dataclass(slots=True)
class ImagenProvider(ProviderClient):
    """Call ``:predict`` and hand the image back with the submit outcome."""

    project_id: str | None
    location: str = "us-central1"
    token_provider: TokenProvider = field(default_factory=GoogleAccessTokenProvider)
    timeout_seconds: float = 30.0
    safety_filter_level: str = "block_some"
    log: logging.Logger = field(default_factory=lambda: logger)
    kind: ProviderKind = ProviderKind.SYNCHRONOUS

    async def submit(self, request: SubmitRequest) -> SubmitOutcome:
        if not self.project_id:
            raise ProviderError("Environment variable GOOGLE_CLOUD_PROJECT_ID is not set")

        body = {
            "instances": [_build_instance(request)],
            "parameters": self._build_parameters(request),
        }
        url = (
            f"https://{self.location}-aiplatform.googleapis.com/v1/projects/{self.project_id}"
            f"/locations/{self.location}/publishers/google/models/{request.model_id}:predict"
        )
        try:
            token = await self.token_provider()
        except (auth_exceptions.GoogleAuthError, OSError) as exc:
            raise ProviderError(f"Could not obtain Google access token: {exc}") from exc
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

        self.log.info("imagen.submit.start", extra={"job_id": request.job_id, "model": request.model_id})
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise ProviderError("Imagen request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Imagen request failed: {exc}") from exc

        if response.status_code >= 400:
            text = response.text or ""
            self.log.warning(
                "imagen.submit.rejected",
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

        artifact = _image_artifact(json_or_empty(response))
        self.log.info(
            "imagen.submit.done",
            extra={
                "job_id": request.job_id,
                "mime_type": artifact.mime_type,
                "size_bytes": len(artifact.data or b""),
            },
        )
        return SubmitOutcome(handle=ProviderHandle(), artifact=artifact)

    async def check_status(self, handle: ProviderHandle) -> RawStatus:
        return Unknown("synchronous provider has no status endpoint")

    def _build_parameters(self, request: SubmitRequest) -> dict[str, Any]:
        params = request.parameters
        aspect_ratio = params.get("aspectRatio")
        parameters: dict[str, Any] = {
            "sampleCount": 1,
            "aspectRatio": aspect_ratio if aspect_ratio in SUPPORTED_ASPECT_RATIOS else "1:1",
            "safetyFilterLevel": self.safety_filter_level,
            "personGeneration": "allow_adult",
        }
        if params.get("seed") is not None:
            parameters["seed"] = params["seed"]
        return parameters


def _build_instance(request: SubmitRequest) -> dict[str, Any]:
    instance: dict[str, Any] = {"prompt": request.prompt}
    if request.parameters.get("negativePrompt"):
        instance["negativePrompt"] = request.parameters["negativePrompt"]
    reference_image = request.parameters.get("referenceImage")
    if reference_image:
        mime_type, payload = split_image_data(reference_image)
        instance["image"] = {"bytesBase64Encoded": payload, "mimeType": mime_type}
    return instance


def _image_artifact(payload: dict[str, Any]) -> ArtifactSource:
    predictions = payload.get("predictions")
    if not isinstance(predictions, list) or not predictions or not isinstance(predictions[0], dict):
        raise ProviderError("No image generated by Imagen")
    first = predictions[0]
    encoded = first.get("bytesBase64Encoded")
    if not encoded:
        # Filtered prompts come back as a prediction without bytes.
        reason = first.get("raiFilteredReason") or "No image data returned by Imagen"
        raise ProviderError(str(reason))
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProviderError("Imagen returned undecodable image data") from exc
    return ArtifactSource(mime_type=first.get("mimeType") or "image/png", data=data)
