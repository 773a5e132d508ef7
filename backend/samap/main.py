from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from samap.api.routes import automation, health, packages, public, sales, signature_links, webhooks
from samap.core.config import settings
from samap.core.errors import WorkflowError
from samap.core.logging_setup import logger
from samap.db.session import engine, init_db
from samap.services.automation import AutomationService
from samap.services.scheduler import AutomationScheduler


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    init_db()

    scheduler: AutomationScheduler | None = None
    if settings.automation_enabled:
        scheduler = AutomationScheduler(
            lambda: AutomationService(engine),
            interval_seconds=settings.automation_interval_seconds,
        )
        scheduler.start()
    application.state.scheduler = scheduler

    yield

    if scheduler is not None:
        scheduler.stop()


def _normalize_origin(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    public_front_base = settings.resolved_public_app_url()
    raw_origins = settings.allowed_origins + ([public_front_base] if public_front_base else [])
    origins: list[str] = []
    for item in raw_origins:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)
    logger.info("CORS configurado con origins: %s", origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(WorkflowError)
    async def workflow_error_handler(_: Request, exc: WorkflowError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "details": exc.details},
        )

    application.include_router(health.router, prefix="/health")
    application.include_router(sales.router, prefix=settings.api_v1_str)
    application.include_router(signature_links.router, prefix=settings.api_v1_str)
    application.include_router(packages.router, prefix=settings.api_v1_str)
    application.include_router(automation.router, prefix=settings.api_v1_str)
    application.include_router(webhooks.router, prefix=settings.api_v1_str)
    application.include_router(public.router, prefix="")

    @application.get("/")
    def root() -> dict[str, str]:
        return {"service": settings.project_name}

    logger.info("SAMAP Ventas API inicializada")
    return application


app = create_app()
