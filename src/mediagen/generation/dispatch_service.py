"""Job submission: validation, routing, credit checks and provider submit."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..config import ChargePolicy
from ..credits.credit_ledger import CreditLedger
from ..providers.providers_base import ProviderClient, SubmitOutcome, SubmitRequest
from ..repositories.generation_job_repository import GenerationJobRepository
from .completion_service import CompletionService
from .generation_errors import (
    InsufficientCreditsError,
    ProviderEntitlementError,
    ProviderError,
)
from .generation_models import ErrorKind, GenerationJob, GenerationResult
from .model_routing import ModelRoute, ModelRouter
from .validation import RequestValidator, ValidatedRequest

logger = logging.getLogger(__name__)

ENTITLEMENT_FALLBACK_REASON = "premium_model_access_not_available"


@dataclass(slots=True)
class DispatchService:
    """Coordinates a single submit call."""

    job_repo: GenerationJobRepository
    ledger: CreditLedger
    router: ModelRouter
    providers: Mapping[Any, ProviderClient]
    completion: CompletionService
    generation_cost: int
    image_generation_cost: int = 2
    charge_policy: ChargePolicy = ChargePolicy.ON_COMPLETION
    validator: RequestValidator = field(default_factory=RequestValidator)
    log: logging.Logger = field(default_factory=lambda: logger)

    async def submit(
        self,
        *,
        account_id: str,
        model_alias: str | None,
        prompt: str | None,
        parameters: dict[str, Any] | None = None,
    ) -> GenerationResult:
        """Create a job and hand it to the provider.

        Raises ``ValidationError`` or ``InsufficientCreditsError`` before any
        job exists. Provider failures are recorded on the job and returned.
        """
        request = self.validator.validate(prompt, parameters)
        resolved = self.router.resolve(model_alias)

        route = resolved.route
        cost = self.cost_for(route)
        available = self.ledger.balance(account_id)
        if available < cost:
            self.log.info(
                "generation.submit.insufficient_credits",
                extra={"account_id": account_id, "required": cost, "available": available},
            )
            raise InsufficientCreditsError(required=cost, available=available)

        job = self.job_repo.create_queued(
            job_id=uuid.uuid4().hex,
            account_id=account_id,
            provider=route.provider,
            model_id=route.model_id,
            requested_model=resolved.requested or route.model_id,
            prompt=request.prompt,
            parameters=_persistable(request.parameters),
            credits_reserved=cost,
            media_kind=route.media_kind,
        )
        self.log.info(
            "generation.submit.queued",
            extra={
                "job_id": job.id,
                "account_id": account_id,
                "model": route.model_id,
                "requested": resolved.requested,
                "used_default": resolved.used_default,
            },
        )

        try:
            outcome, route = await self._submit_with_fallback(job, route, request)
        except ProviderError as exc:
            self.job_repo.fail(job.id, kind=ErrorKind.PROVIDER_FAILURE, message=str(exc))
            self.log.warning(
                "generation.submit.failed",
                extra={"job_id": job.id, "status_code": exc.status_code, "error": str(exc)},
            )
            return GenerationResult(job=self.job_repo.get(job.id))

        try:
            self._charge(job)
        except InsufficientCreditsError as exc:
            self.job_repo.fail(job.id, kind=ErrorKind.INSUFFICIENT_CREDITS, message=str(exc))
            self.log.warning("generation.submit.hold_rejected", extra={"job_id": job.id})
            return GenerationResult(job=self.job_repo.get(job.id))

        if not self.job_repo.mark_processing(
            job.id, handle=outcome.handle, location_hint=outcome.location_hint
        ):
            raise RuntimeError(f"Job {job.id} left QUEUED before its handle was recorded")

        current = self.job_repo.get(job.id)
        self.log.info(
            "generation.submit.accepted",
            extra={"job_id": job.id, "model": route.model_id, **outcome.handle.as_dict()},
        )

        if outcome.artifact is not None:
            completed = await self.completion.complete(current, outcome.artifact)
            return GenerationResult(job=completed.job, result_url=completed.result_url)
        return GenerationResult(job=current)

    def cost_for(self, route: ModelRoute) -> int:
        return self.image_generation_cost if route.media_kind == "image" else self.generation_cost

    async def _submit_with_fallback(
        self, job: GenerationJob, route: ModelRoute, request: ValidatedRequest
    ) -> tuple[SubmitOutcome, ModelRoute]:
        try:
            return await self._submit(job, route, request), route
        except ProviderEntitlementError as exc:
            fallback = self.router.fallback_for(route)
            if fallback is None:
                raise
            self.log.warning(
                "generation.submit.entitlement_fallback",
                extra={
                    "job_id": job.id,
                    "requested_model": route.model_id,
                    "fallback_model": fallback.model_id,
                    "error": str(exc),
                },
            )
            self.job_repo.record_route(
                job.id,
                provider=fallback.provider,
                model_id=fallback.model_id,
                fallback_reason=ENTITLEMENT_FALLBACK_REASON,
            )
            return await self._submit(job, fallback, request), fallback

    async def _submit(
        self, job: GenerationJob, route: ModelRoute, request: ValidatedRequest
    ) -> SubmitOutcome:
        provider = self.providers[route.provider]
        return await provider.submit(
            SubmitRequest(
                job_id=job.id,
                model_id=route.model_id,
                prompt=request.prompt,
                parameters=request.parameters,
            )
        )

    def _charge(self, job: GenerationJob) -> None:
        if self.charge_policy == ChargePolicy.ON_SUBMIT:
            self.ledger.debit(job.id, job.account_id, job.credits_reserved, require_available=True)
            return
        if not self.ledger.reserve(job.id, job.account_id, job.credits_reserved):
            raise InsufficientCreditsError(
                required=job.credits_reserved, available=self.ledger.balance(job.account_id)
            )


def _persistable(parameters: dict[str, Any]) -> dict[str, Any]:
    stored = {key: value for key, value in parameters.items() if key != "referenceImage"}
    if "referenceImage" in parameters:
        stored["hasReferenceImage"] = True
    return stored
