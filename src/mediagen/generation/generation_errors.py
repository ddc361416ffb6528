"""Domain-specific exceptions for the generation pipeline."""

from __future__ import annotations

import re

MAX_ERROR_MESSAGE_LENGTH = 500

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def sanitize_message(message: object, *, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Strip control characters and truncate provider text shown to callers."""
    text = _CONTROL_CHARS.sub("", str(message or "")).strip()
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


class GenerationError(Exception):
    """Base class for generation-related errors."""


class ValidationError(GenerationError):
    """Raised when prompt or parameters are rejected before any provider call."""


class InsufficientCreditsError(GenerationError):
    """Raised when the account cannot cover the generation cost."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits: required {required}, available {available}")
        self.required = required
        self.available = available


class ProviderError(GenerationError):
    """Raised when a provider rejects or fails a submit call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(sanitize_message(message))
        self.status_code = status_code


class ProviderEntitlementError(ProviderError):
    """Raised when the caller lacks access to the requested model tier."""


class StorageError(GenerationError):
    """Raised when owned storage cannot fetch or persist an artifact."""
