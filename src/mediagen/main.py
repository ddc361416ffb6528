"""FastAPI application entry point.

Run with ``uvicorn mediagen.main:create_app --factory``.
"""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .config import AppConfig, load_config
from .dependencies import include_routers
from .generation.generation_models import ErrorKind
from .logging import bind_request_context, clear_request_context, configure_logging

logger = structlog.get_logger(__name__)


def create_app(config: AppConfig | None = None, **wiring) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    configure_logging()
    cfg = config or load_config()
    app = FastAPI(title="mediagen")
    include_routers(app, cfg, **wiring)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        clear_request_context()
        bind_request_context(method=request.method, path=request.url.path)
        try:
            return await call_next(request)
        finally:
            clear_request_context()

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "api.unexpected_error",
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "status": "failed",
                    "error": "Internal error",
                    "errorKind": ErrorKind.INTERNAL_ERROR.value,
                }
            },
        )

    return app
