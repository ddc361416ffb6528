"""Abstract provider client definition and normalized status shapes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..generation.generation_models import ArtifactSource, ProviderHandle, ProviderKind


@dataclass(slots=True)
class SubmitRequest:
    """Everything a provider needs to start one generation."""

    job_id: str
    model_id: str
    prompt: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SubmitOutcome:
    """Provider acknowledgement of a submission.

    ``artifact`` is set when the provider answered synchronously.
    """

    handle: ProviderHandle
    location_hint: str | None = None
    artifact: ArtifactSource | None = None


@dataclass(frozen=True, slots=True)
class DoneSuccess:
    artifact: ArtifactSource | None = None


@dataclass(frozen=True, slots=True)
class DoneFailure:
    message: str


@dataclass(frozen=True, slots=True)
class Running:
    pass


@dataclass(frozen=True, slots=True)
class Unknown:
    reason: str


RawStatus = DoneSuccess | DoneFailure | Running | Unknown


class ProviderClient(ABC):
    """Base interface for generation providers."""

    kind: ProviderKind

    @abstractmethod
    async def submit(self, request: SubmitRequest) -> SubmitOutcome:
        """Start a generation; raise ``ProviderError`` when it is rejected."""

    @abstractmethod
    async def check_status(self, handle: ProviderHandle) -> RawStatus:
        """Ask the provider about a job; never raises for transport problems."""


def detect_image_format(encoded: str) -> str:
    """Guess the image subtype from the first base64 characters (magic bytes)."""
    head = encoded[:12]
    if head.startswith("/9j/"):
        return "jpeg"
    if head.startswith("iVBORw0KGgo"):
        return "png"
    if head.startswith("UklGR"):
        return "webp"
    if head.startswith("R0lGOD"):
        return "gif"
    if head.startswith("Qk"):
        return "bmp"
    return "jpeg"


def split_image_data(reference_image: str) -> tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a raw or ``data:`` URL image."""
    if reference_image.startswith("data:image/"):
        header, _, payload = reference_image.partition(",")
        mime_type = header[len("data:"):].split(";", 1)[0]
        return mime_type, payload
    return f"image/{detect_image_format(reference_image)}", reference_image


def json_or_empty(response: Any) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def error_message(response: Any) -> str | None:
    """Best human-readable reason from a provider error response."""
    payload = json_or_empty(response)
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    text = getattr(response, "text", "") or ""
    return text[:500] or None
