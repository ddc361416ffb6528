"""HTTP routes for generation submit, poll and read-only views."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ..credits.credit_ledger import CreditLedger
from ..exceptions import NotFoundError
from ..logging import bind_request_context
from ..repositories.generation_job_repository import GenerationJobRepository
from .completion_service import CompletionService
from .dispatch_service import DispatchService
from .generation_errors import InsufficientCreditsError, ValidationError
from .generation_models import ErrorKind, GenerationResult, JobStatus
from .generation_schemas import (
    CreditsResponse,
    GenerationListResponse,
    GenerationResponse,
    ModelRouteResponse,
    PollRequestModel,
    SubmitRequestModel,
)
from .model_routing import ModelRouter
from .reconcile_service import ReconcileService

router = APIRouter(prefix="/api", tags=["generations"])
logger = structlog.get_logger(__name__)

RECENT_LIMIT = 20


def _from_state(request: Request, name: str) -> Any:
    try:
        return getattr(request.app.state, name)
    except AttributeError as exc:
        raise RuntimeError(f"{name} is not configured") from exc


def get_dispatch_service(request: Request) -> DispatchService:
    return _from_state(request, "dispatch_service")


def get_reconcile_service(request: Request) -> ReconcileService:
    return _from_state(request, "reconcile_service")


def get_completion_service(request: Request) -> CompletionService:
    return _from_state(request, "completion_service")


def get_job_repo(request: Request) -> GenerationJobRepository:
    return _from_state(request, "job_repo")


def get_ledger(request: Request) -> CreditLedger:
    return _from_state(request, "credit_ledger")


def get_model_router(request: Request) -> ModelRouter:
    return _from_state(request, "model_router")


def get_account_id(
    request: Request,
    x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
) -> str:
    """Caller identity; authentication happens in front of this service."""
    account_id = (x_account_id or "").strip() or request.app.state.config.credits.default_account_id
    bind_request_context(account_id=account_id)
    return account_id


def _failure_detail(message: str, kind: ErrorKind, **extra: Any) -> dict[str, Any]:
    detail: dict[str, Any] = {"status": "failed", "error": message, "errorKind": kind.value}
    detail.update({key: value for key, value in extra.items() if value is not None})
    return detail


def _render(result: GenerationResult) -> dict[str, Any]:
    return GenerationResponse.from_result(result).model_dump(
        by_alias=True, exclude_none=True, mode="json"
    )


@router.post("/generations")
async def submit_generation(
    payload: SubmitRequestModel,
    account_id: str = Depends(get_account_id),
    service: DispatchService = Depends(get_dispatch_service),
) -> dict[str, Any]:
    """Validate, route and submit one generation request."""
    try:
        result = await service.submit(
            account_id=account_id,
            model_alias=payload.model_alias,
            prompt=payload.prompt,
            parameters=payload.parameters,
        )
    except ValidationError as exc:
        logger.info("generation.api.invalid", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_failure_detail(str(exc), ErrorKind.VALIDATION_ERROR),
        ) from exc
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=_failure_detail(
                str(exc),
                ErrorKind.INSUFFICIENT_CREDITS,
                required=exc.required,
                available=exc.available,
            ),
        ) from exc

    body = _render(result)
    bind_request_context(job_id=result.job.id)
    if result.job.status == JobStatus.FAILED:
        code = (
            status.HTTP_402_PAYMENT_REQUIRED
            if result.job.error_kind == ErrorKind.INSUFFICIENT_CREDITS
            else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(status_code=code, detail=body)
    return body


@router.post("/generations/poll")
async def poll_generation(
    payload: PollRequestModel,
    account_id: str = Depends(get_account_id),
    service: ReconcileService = Depends(get_reconcile_service),
    job_repo: GenerationJobRepository = Depends(get_job_repo),
) -> dict[str, Any]:
    """Reconcile a job's status; always 200 for processing, completed or failed."""
    bind_request_context(job_id=payload.job_id)
    try:
        job = job_repo.get(payload.job_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "error": "generation_not_found"},
        ) from None
    if job.account_id != account_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "error": "generation_not_found"},
        )

    submitted = payload.submitted_handle()
    stored = job.handle.as_dict()
    mismatched = {key: value for key, value in submitted.items() if stored.get(key) != value}
    if mismatched:
        logger.warning(
            "generation.poll.handle_mismatch",
            job_id=job.id,
            submitted=mismatched,
            stored=stored,
        )

    result = await service.poll(job.id)
    return _render(result)


@router.get("/generations")
async def list_generations(
    account_id: str = Depends(get_account_id),
    job_repo: GenerationJobRepository = Depends(get_job_repo),
) -> dict[str, Any]:
    jobs = job_repo.list_recent(account_id, limit=RECENT_LIMIT)
    response = GenerationListResponse(items=[GenerationResponse.from_job(job) for job in jobs])
    return response.model_dump(by_alias=True, exclude_none=True, mode="json")


@router.get("/generations/{job_id}")
async def get_generation(
    job_id: str,
    account_id: str = Depends(get_account_id),
    job_repo: GenerationJobRepository = Depends(get_job_repo),
    completion: CompletionService = Depends(get_completion_service),
) -> dict[str, Any]:
    """Read-only view: no provider or bucket calls."""
    try:
        job = job_repo.get(job_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "error": "generation_not_found"},
        ) from None
    if job.account_id != account_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "error": "generation_not_found"},
        )
    reported, result_url = await completion.view(job)
    return _render(GenerationResult(job=reported, result_url=result_url))


@router.get("/credits")
async def get_credits(
    account_id: str = Depends(get_account_id),
    ledger: CreditLedger = Depends(get_ledger),
) -> dict[str, Any]:
    snapshot = ledger.snapshot(account_id)
    return CreditsResponse(
        account_id=snapshot.account_id,
        balance=snapshot.balance,
        reserved=snapshot.reserved,
        available=snapshot.available,
    ).model_dump(by_alias=True)


@router.get("/models")
async def list_models(
    model_router: ModelRouter = Depends(get_model_router),
    dispatch: DispatchService = Depends(get_dispatch_service),
) -> list[dict[str, Any]]:
    default_id = model_router.default_route.model_id
    return [
        ModelRouteResponse(
            model_id=route.model_id,
            display_name=route.display_name,
            provider=route.provider.value,
            media_kind=route.media_kind,
            premium=route.premium,
            fallback_model_id=route.fallback_model_id,
            aliases=list(route.aliases),
            cost=dispatch.cost_for(route),
            is_default=route.model_id == default_id,
        ).model_dump(by_alias=True, exclude_none=True)
        for route in model_router.routes
    ]
