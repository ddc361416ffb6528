"""BytePlus ModelArk Seedance provider (task-id handles)."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from ..generation.generation_errors import (
    ProviderEntitlementError,
    ProviderError,
    sanitize_message,
)
from ..generation.generation_models import ArtifactSource, ProviderHandle, ProviderKind
from .providers_base import (
    DoneFailure,
    DoneSuccess,
    ProviderClient,
    RawStatus,
    Running,
    SubmitOutcome,
    SubmitRequest,
    Unknown,
    detect_image_format,
    error_message,
    json_or_empty,
)

logger = logging.getLogger(__name__)

TEXT_TO_VIDEO_MODEL = "seedance-1-0-lite-t2v-250428"
IMAGE_TO_VIDEO_MODEL = "seedance-1-0-lite-i2v-250428"
PRO_MODEL = "seedance-1-0-pro-250528"

SUCCESS_STATUSES = frozenset({"completed", "success", "succeeded"})
FAILURE_STATUSES = frozenset({"failed", "error"})


def select_model(model_id: str | None, *, has_reference_image: bool) -> str:
    """Pick the concrete Seedance model for a request."""
    name = (model_id or "").lower()
    if "pro" in name or "250528" in name:
        return PRO_MODEL
    if "i2v" in name or "image-to-video" in name:
        return IMAGE_TO_VIDEO_MODEL
    if "t2v" in name or "text-to-video" in name:
        return TEXT_TO_VIDEO_MODEL
    return IMAGE_TO_VIDEO_MODEL if has_reference_image else TEXT_TO_VIDEO_MODEL


def build_prompt(prompt: str, parameters: dict[str, Any], *, image_to_video: bool) -> str:
    """Append the provider's ``--flag value`` options to the prompt text."""
    resolution = parameters.get("resolution") or "720p"
    duration = parameters.get("duration") or 5
    parts = [prompt.strip()]
    if image_to_video:
        parts += [
            f"--resolution {resolution}",
            f"--duration {duration}",
            "--ratio adaptive",
            "--camerafixed false",
        ]
    else:
        aspect_ratio = parameters.get("aspectRatio")
        if aspect_ratio not in ("16:9", "9:16", "1:1"):
            aspect_ratio = "16:9"
        parts += [
            f"--rs {resolution}",
            f"--dur {duration}",
            f"--rt {aspect_ratio}",
            "--cf false",
            f"--fps {parameters.get('frameRate') or 24}",
            "--wm true",
        ]
    return " ".join(parts)


def image_data_url(reference_image: str) -> str:
    if reference_image.startswith("data:image/"):
        return reference_image
    return f"data:image/{detect_image_format(reference_image)};base64,{reference_image}"


@dataclass(slots=True)
class SeedanceProvider(ProviderClient):
    """Create content-generation tasks and poll them by task id."""

    endpoint: str
    api_key: str | None
    timeout_seconds: float = 30.0
    status_timeout_seconds: float = 15.0
    log: logging.Logger = field(default_factory=lambda: logger)
    kind: ProviderKind = ProviderKind.TASK_ID

    async def submit(self, request: SubmitRequest) -> SubmitOutcome:
        if not self.api_key:
            raise ProviderError("Environment variable BYTEPLUS_API_KEY is not set")

        reference_image = request.parameters.get("referenceImage")
        model = select_model(request.model_id, has_reference_image=bool(reference_image))
        image_to_video = bool(reference_image)
        content: list[dict[str, Any]] = [
            {
                "type": "text",
                "text": build_prompt(request.prompt, request.parameters, image_to_video=image_to_video),
            }
        ]
        if reference_image:
            content.append({"type": "image_url", "image_url": {"url": image_data_url(reference_image)}})

        self.log.info(
            "seedance.submit.start",
            extra={"job_id": request.job_id, "model": model, "image_to_video": image_to_video},
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.endpoint}/contents/generations/tasks",
                    headers=self._headers(),
                    json={"model": model, "content": content},
                )
        except httpx.TimeoutException as exc:
            raise ProviderError("Seedance submit timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Seedance submit failed: {exc}") from exc

        if response.status_code >= 400:
            message = error_message(response) or f"BytePlus API error {response.status_code}"
            self.log.warning(
                "seedance.submit.rejected",
                extra={"job_id": request.job_id, "status_code": response.status_code},
            )
            if response.status_code == 403:
                raise ProviderEntitlementError(message, status_code=403)
            raise ProviderError(message, status_code=response.status_code)

        payload = json_or_empty(response)
        task_id = payload.get("id") or payload.get("task_id")
        if not task_id:
            raise ProviderError("BytePlus response did not include a task id")

        artifact = None
        if str(payload.get("status", "")).lower() in SUCCESS_STATUSES:
            artifact = _artifact_from_url(find_video_url(payload))

        self.log.info("seedance.submit.accepted", extra={"job_id": request.job_id, "task_id": task_id})
        return SubmitOutcome(handle=ProviderHandle(task_id=str(task_id)), artifact=artifact)

    async def check_status(self, handle: ProviderHandle) -> RawStatus:
        if not handle.task_id:
            return Unknown("no task id")
        if not self.api_key:
            return Unknown("BytePlus API key is not configured")
        try:
            async with httpx.AsyncClient(timeout=self.status_timeout_seconds) as client:
                response = await client.get(
                    f"{self.endpoint}/contents/generations/tasks/{handle.task_id}",
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            self.log.info(
                "seedance.status.transport_error",
                extra={"task_id": handle.task_id, "error": str(exc)[:200]},
            )
            return Unknown("status check transport error")

        if response.status_code >= 300:
            self.log.info(
                "seedance.status.unavailable",
                extra={"task_id": handle.task_id, "status_code": response.status_code},
            )
            return Unknown(f"status check returned HTTP {response.status_code}")

        return decode_task(json_or_empty(response))

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}


def decode_task(payload: dict[str, Any]) -> RawStatus:
    """Normalize a BytePlus task body into a raw status."""
    status = str(payload.get("status") or "").lower()
    if status in FAILURE_STATUSES:
        error = payload.get("error")
        message = error.get("message") if isinstance(error, dict) else error
        return DoneFailure(sanitize_message(message or "Generation task failed"))
    if status in SUCCESS_STATUSES:
        artifact = _artifact_from_url(find_video_url(payload))
        if artifact is None:
            return Running()
        return DoneSuccess(artifact)
    return Running()


def find_video_url(payload: dict[str, Any]) -> str | None:
    """Look up the download URL across the response shapes BytePlus returns."""
    result = payload.get("result")
    if isinstance(result, dict):
        nested = result.get("result")
        if isinstance(nested, dict) and nested.get("video_url"):
            return nested["video_url"]
        if result.get("video_url"):
            return result["video_url"]
    if payload.get("video_url"):
        return payload["video_url"]
    content = payload.get("content")
    if isinstance(content, dict):
        return content.get("video_url") or content.get("url")
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and (item.get("video_url") or item.get("url")):
                return item.get("video_url") or item.get("url")
    return None


def _artifact_from_url(url: str | None) -> ArtifactSource | None:
    if not url:
        return None
    mime_type, _ = mimetypes.guess_type(urlparse(url).path)
    return ArtifactSource(mime_type=mime_type or "video/mp4", uri=url)

