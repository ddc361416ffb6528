"""Prompt and parameter validation."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any

from .generation_errors import ValidationError

logger = logging.getLogger(__name__)

PROMPT_MIN_LENGTH = 3
PROMPT_MAX_LENGTH = 1000
ASPECT_RATIOS = ("16:9", "9:16", "1:1", "4:3", "3:4")
RESOLUTIONS = ("480p", "720p", "1080p")


@dataclass(slots=True)
class ValidatedRequest:
    prompt: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RequestValidator:
    """Reject bad prompts and parameters before any job row or provider call."""

    min_prompt_length: int = PROMPT_MIN_LENGTH
    max_prompt_length: int = PROMPT_MAX_LENGTH

    def validate(self, prompt: str | None, parameters: dict[str, Any] | None) -> ValidatedRequest:
        text = (prompt or "").strip()
        if len(text) < self.min_prompt_length:
            raise ValidationError(
                f"Prompt must be at least {self.min_prompt_length} characters long"
            )
        if len(text) > self.max_prompt_length:
            raise ValidationError(
                f"Prompt must be at most {self.max_prompt_length} characters long"
            )

        raw = dict(parameters or {})
        unknown = sorted(set(raw) - set(_CHECKS))
        if unknown:
            logger.warning("validation.parameters.unknown", extra={"keys": unknown})
            raise ValidationError(f"Unsupported parameters: {', '.join(unknown)}")

        cleaned: dict[str, Any] = {}
        for key, value in raw.items():
            if value is None:
                continue
            cleaned[key] = _CHECKS[key](key, value)
        return ValidatedRequest(prompt=text, parameters=cleaned)


def _int_between(low: int, high: int):
    def check(key: str, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"'{key}' must be an integer")
        if not low <= value <= high:
            raise ValidationError(f"'{key}' must be between {low} and {high}")
        return value

    return check


def _one_of(choices: tuple[str, ...]):
    def check(key: str, value: Any) -> str:
        if value not in choices:
            raise ValidationError(f"'{key}' must be one of {', '.join(choices)}")
        return value

    return check


def _seed(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"'{key}' must be a non-negative integer")
    return value


def _negative_prompt(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string")
    if len(value) > PROMPT_MAX_LENGTH:
        raise ValidationError(f"'{key}' must be at most {PROMPT_MAX_LENGTH} characters long")
    return value.strip()


def _flag(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"'{key}' must be a boolean")
    return value


def _reference_image(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"'{key}' must be a base64 string")
    encoded = value.split(",", 1)[1] if value.startswith("data:image/") else value
    try:
        base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"'{key}' is not valid base64") from exc
    return value


_CHECKS = {
    "duration": _int_between(5, 10),
    "aspectRatio": _one_of(ASPECT_RATIOS),
    "resolution": _one_of(RESOLUTIONS),
    "sampleCount": _int_between(1, 4),
    "frameRate": _int_between(24, 60),
    "seed": _seed,
    "negativePrompt": _negative_prompt,
    "enhancePrompt": _flag,
    "referenceImage": _reference_image,
}
