"""Main FastAPI application for the Renewal Reminder Orchestrator."""

import time
from typing import Optional

from fastapi import FastAPI

from app.api.cron import router as cron_router
from app.api.health import router as health_router
from app.api.webhook import router as webhook_router
from app.core.config import Settings, get_settings
from app.core.dependencies import WorkflowContainer, build_container
from app.core.logging import get_logger, setup_logging
from app.core.middleware import CorrelationIDMiddleware

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[WorkflowContainer] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings; read from the environment when omitted
        container: Prebuilt collaborators; built from settings when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or (container.settings if container else get_settings())

    setup_logging(
        log_level=settings.log_level,
        service_name=settings.service_name,
        version=settings.service_version,
        environment=settings.environment,
    )

    app = FastAPI(
        title="Renewal Reminder Orchestrator",
        description="Drives vehicle-inspection renewal cases from WhatsApp reminders to agent calls",
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.container = container or build_container(settings)
    app.state.start_time = time.time()

    app.add_middleware(CorrelationIDMiddleware)

    app.include_router(cron_router, prefix="/api/cron", tags=["cron"])
    app.include_router(webhook_router, prefix="/api", tags=["webhook"])
    app.include_router(health_router, tags=["health"])

    logger.info(
        "Application created",
        service=settings.service_name,
        version=settings.service_version,
        storage_backend=settings.storage_backend,
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    _settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level=_settings.log_level.lower()
    )
