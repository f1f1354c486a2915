"""Stratus Engine — FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import init_db
from .errors import StratusError
from .providers.dbos.client import DbosCloudClient
from .providers.fly.client import MachinesClient
from .services.builds import BuildRegistry
from .services.reconciler import HealthProbe

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    init_db()
    yield
    await app.state.builds.shutdown()
    await app.state.control_plane.aclose()
    await app.state.platform.aclose()


async def _stratus_error_handler(request: Request, exc: StratusError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Lifecycle orchestration for remote dev workspaces and deployments",
        lifespan=lifespan,
    )

    # Remote clients and the build registry live for the life of the app
    app.state.control_plane = MachinesClient.from_settings(settings)
    app.state.platform = DbosCloudClient.from_settings(settings)
    app.state.probe = HealthProbe.from_settings(settings)
    app.state.builds = BuildRegistry()

    app.add_exception_handler(StratusError, _stratus_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API key auth (when STRATUS_API_KEY is set)
    from .middleware import ApiKeyMiddleware
    app.add_middleware(ApiKeyMiddleware)

    from .api.deployments import router as deployments_router
    from .api.errors import router as errors_router
    from .api.health import router as health_router
    from .api.workspaces import router as workspaces_router
    app.include_router(health_router)
    app.include_router(workspaces_router, prefix="/api")
    app.include_router(deployments_router, prefix="/api")
    app.include_router(errors_router, prefix="/api")

    return app


app = create_app()
