"""Resolve requested model aliases to a canonical provider and model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .generation_models import ProviderKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelRoute:
    model_id: str
    provider: ProviderKind
    display_name: str
    premium: bool = False
    fallback_model_id: str | None = None
    aliases: tuple[str, ...] = ()
    media_kind: str = "video"


DEFAULT_ROUTES: tuple[ModelRoute, ...] = (
    ModelRoute(
        model_id="veo-2.0-generate-001",
        provider=ProviderKind.OPERATION_BASED,
        display_name="Veo 2.0",
        aliases=("veo 2", "veo 2.0", "veo-2", "google-veo"),
    ),
    ModelRoute(
        model_id="veo-3.0-generate-preview",
        provider=ProviderKind.OPERATION_BASED,
        display_name="Veo 3.0",
        premium=True,
        fallback_model_id="veo-2.0-generate-001",
        aliases=("veo 3", "veo 3.0", "veo-3"),
    ),
    ModelRoute(
        model_id="veo-3.0-fast-generate-preview",
        provider=ProviderKind.OPERATION_BASED,
        display_name="Veo 3.0 Fast",
        premium=True,
        fallback_model_id="veo-2.0-generate-001",
        aliases=("veo 3.0 fast", "veo-3-fast"),
    ),
    ModelRoute(
        model_id="seedance-1-0-lite-t2v-250428",
        provider=ProviderKind.TASK_ID,
        display_name="ByteDance Seedream 1.0 Lite",
        aliases=(
            "bytedance seedream",
            "bytedance-seedream-1.0-lite-t2v",
            "seedance lite",
            "seedance-t2v",
        ),
    ),
    ModelRoute(
        model_id="seedance-1-0-lite-i2v-250428",
        provider=ProviderKind.TASK_ID,
        display_name="ByteDance Seedream 1.0 Lite Image-to-Video",
        aliases=("seedance-i2v", "bytedance-seedream-1.0-lite-i2v"),
    ),
    ModelRoute(
        model_id="seedance-1-0-pro-250528",
        provider=ProviderKind.TASK_ID,
        display_name="ByteDance Seedance 1.0 Pro",
        aliases=("seedance pro", "bytedance seedance pro"),
    ),
    ModelRoute(
        model_id="imagen-3.0-generate-001",
        provider=ProviderKind.SYNCHRONOUS,
        display_name="Imagen 3",
        aliases=("imagen 3", "imagen-3", "vertex-ai-imagen"),
        media_kind="image",
    ),
    ModelRoute(
        model_id="imagen-4.0-generate-preview-06-06",
        provider=ProviderKind.SYNCHRONOUS,
        display_name="Imagen 4 Preview",
        premium=True,
        fallback_model_id="imagen-3.0-generate-001",
        aliases=("imagen 4", "imagen-4", "imagen-4-preview"),
        media_kind="image",
    ),
)


@dataclass(frozen=True, slots=True)
class ResolvedModel:
    route: ModelRoute
    requested: str
    used_default: bool = False


@dataclass(slots=True)
class ModelRouter:
    """Fixed alias table with a configured default for unknown names."""

    default_model_id: str = "veo-2.0-generate-001"
    routes: tuple[ModelRoute, ...] = DEFAULT_ROUTES
    log: logging.Logger = field(default_factory=lambda: logger)
    _index: dict[str, ModelRoute] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        for route in self.routes:
            self._index[route.model_id.lower()] = route
            self._index[route.display_name.lower()] = route
            for alias in route.aliases:
                self._index[alias.lower()] = route
        if self.default_model_id.lower() not in self._index:
            raise ValueError(f"Default model '{self.default_model_id}' is not routable")

    @property
    def default_route(self) -> ModelRoute:
        return self._index[self.default_model_id.lower()]

    def get(self, model_id: str) -> ModelRoute | None:
        return self._index.get(model_id.strip().lower())

    def resolve(self, raw_alias: str | None) -> ResolvedModel:
        requested = (raw_alias or "").strip()
        if not requested:
            return ResolvedModel(route=self.default_route, requested=requested, used_default=True)

        route = self.get(requested) or self._guess(requested.lower())
        if route is not None:
            return ResolvedModel(route=route, requested=requested)

        self.log.warning(
            "routing.alias.unknown",
            extra={"requested": requested, "default_model": self.default_model_id},
        )
        return ResolvedModel(route=self.default_route, requested=requested, used_default=True)

    def fallback_for(self, route: ModelRoute) -> ModelRoute | None:
        """Route to retry with when ``route`` is refused for lack of entitlement."""
        if not route.fallback_model_id:
            return None
        fallback = self.get(route.fallback_model_id)
        # Fallbacks stay on the provider the request was validated for.
        if fallback is None or fallback.provider != route.provider:
            return None
        return fallback

    def _guess(self, name: str) -> ModelRoute | None:
        # Display names drift upstream; match on the distinctive fragments.
        if "seedance" in name or "seedream" in name or "bytedance" in name:
            if "pro" in name:
                return self.get("seedance-1-0-pro-250528")
            if "i2v" in name or "image-to-video" in name:
                return self.get("seedance-1-0-lite-i2v-250428")
            return self.get("seedance-1-0-lite-t2v-250428")
        if "imagen" in name:
            if "4" in name:
                return self.get("imagen-4.0-generate-preview-06-06")
            return self.get("imagen-3.0-generate-001")
        if "veo" in name:
            if "fast" in name:
                return self.get("veo-3.0-fast-generate-preview")
            if "3.0" in name or "veo 3" in name or "veo-3" in name:
                return self.get("veo-3.0-generate-preview")
            return self.get("veo-2.0-generate-001")
        return None
