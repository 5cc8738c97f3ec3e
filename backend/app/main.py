from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import billing, health, tenants
from app.core.config import settings
from app.db.session import init_db
from app.core.logging_setup import logger


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
    init_db()
    yield


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

    logger.info("Billing API initialised")

    # ===============================================================
    # CORS
    # ===============================================================
    public_front_base = settings.resolved_public_app_url()
    extra_origins = [_normalize_origin(public_front_base)] if public_front_base else []

    origins: list[str] = []
    for item in settings.allowed_origins + extra_origins:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)

    logger.info("CORS origins: %s", origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ===============================================================
    # ROUTES
    # ===============================================================
    application.include_router(health.router, prefix="/health")
    application.include_router(tenants.router, prefix=settings.api_v1_str)
    application.include_router(billing.router, prefix=settings.api_v1_str)

    @application.get("/")
    def root():
        return {"service": settings.project_name}

    return application


app = create_app()
