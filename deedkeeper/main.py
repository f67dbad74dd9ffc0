"""
Deedkeeper - FastAPI Application
Property document records with integrity checks, orphan cleanup, backups
and ownership transfer.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from deedkeeper import __version__
from deedkeeper.core.config import Settings, get_settings
from deedkeeper.core.container import Services, build_services
from deedkeeper.core.database import close_db, init_db
from deedkeeper.core.errors import setup_exception_handlers
from deedkeeper.core.logging_config import setup_logging
from deedkeeper.routers import auth, documents, maintenance, notifications, properties, users, validation

logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    if settings.store_backend == "sql":
        await init_db()
        logger.info("SQL entity store ready")
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.store_backend} store)")

    yield

    await app.state.services.store.close()
    if settings.store_backend == "sql":
        await close_db()
    logger.info("Shutdown complete")


# =============================================================================
# App Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Application factory.

    Tests pass their own settings and services (e.g. an in-memory store);
    otherwise both are built from the environment.
    """
    settings = settings or get_settings()
    setup_logging(level=settings.log_level, json_format=settings.log_json_format)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version or __version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    setup_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(maintenance.router)
    app.include_router(properties.router)
    app.include_router(documents.router)
    app.include_router(notifications.router)
    app.include_router(validation.router)

    @app.get("/healthz", tags=["Health"])
    async def healthz():
        return {"status": "ok", "version": settings.app_version}

    return app
