from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from filiacao.api.routes import admin_proposals, health, public, public_social, webhooks
from filiacao.core.config import get_settings
from filiacao.core.errors import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    FiliacaoError,
    InvalidOperationError,
    NotFoundError,
    UnauthorizedError,
)
from filiacao.core.logging_setup import logger
from filiacao.db.session import init_db

ERROR_STATUS: tuple[tuple[type[FiliacaoError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidOperationError, status.HTTP_400_BAD_REQUEST),
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
    # Inicializa banco / tabelas
    init_db()
    yield


def _normalize_origin(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def _status_for(exc: FiliacaoError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def domain_error_handler(request: Request, exc: FiliacaoError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(
            "request.failed",
            extra={"path": request.url.path, "error_type": type(exc).__name__, "status_code": status_code},
        )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app() -> FastAPI:
    settings = get_settings()
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    origins: list[str] = []
    for item in settings.allowed_origins:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(FiliacaoError, domain_error_handler)

    # ===============================================================
    # ROTAS
    # ===============================================================
    application.include_router(health.router, prefix="/health")
    application.include_router(admin_proposals.router, prefix=settings.api_v1_str)
    application.include_router(public.router, prefix=settings.api_v1_str)
    application.include_router(public_social.router, prefix=settings.api_v1_str)
    application.include_router(webhooks.router, prefix=settings.api_v1_str)

    @application.get("/")
    def root() -> dict[str, str]:
        return {"service": settings.project_name}

    logger.info("app.started", extra={"origins": origins})
    return application


app = create_app()
