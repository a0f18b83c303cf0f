"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_pagination import add_pagination
from sqlalchemy.exc import OperationalError

from app.config import get_settings
from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    MessagingError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from app.infra.logging_config import LoggingConfig, get_logger
from app.routers import (
    attachments_router,
    audit_logs_router,
    exports_router,
    messages_router,
    moderation_router,
    presence_router,
    threads_router,
)

logger = get_logger("api")

# Most specific first; the first matching family wins
ERROR_STATUS_CODES = (
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (TransientError, 503),
    (ValidationError, 422),
)


def status_code_for(error: MessagingError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    status_code = status_code_for(exc)
    headers = None
    if isinstance(exc, TransientError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    if status_code >= 500:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.exception("Database unavailable on %s", request.url.path)
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable", "code": "transient"},
        headers={"Retry-After": "1"},
    )


def create_app(testing: bool = False) -> FastAPI:
    settings = get_settings()
    LoggingConfig()

    app = FastAPI(
        title="Parley",
        version="1.0.0",
        description="Conversation and moderation messaging service",
        debug=testing,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MessagingError, messaging_error_handler)
    app.add_exception_handler(OperationalError, operational_error_handler)

    app.include_router(threads_router.router)
    app.include_router(messages_router.router)
    app.include_router(presence_router.router)
    app.include_router(attachments_router.router)
    app.include_router(moderation_router.router)
    app.include_router(audit_logs_router.router)
    app.include_router(exports_router.router)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "app": settings.app_name}

    add_pagination(app)
    return app


app = create_app()
