"""
Health check endpoints for the Renewal Reminder Orchestrator.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.core.dependencies import WorkflowContainer, get_container
from app.core.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str


class DetailedHealthResponse(HealthResponse):
    """Detailed health check response model."""

    checks: Dict[str, Any]


def _uptime(request: Request) -> float:
    start_time = getattr(request.app.state, "start_time", time.time())
    return time.time() - start_time


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, container: WorkflowContainer = Depends(get_container)):
    """
    Basic health check endpoint.

    Returns service status, version, and uptime.
    """
    settings = container.settings
    response = HealthResponse(
        status="healthy",
        version=settings.service_version,
        uptime_seconds=_uptime(request),
        timestamp=datetime.now(timezone.utc),
        service_name=settings.service_name,
    )
    logger.info("Health check completed", status=response.status, uptime_seconds=response.uptime_seconds)
    return response


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(request: Request, container: WorkflowContainer = Depends(get_container)):
    """
    Detailed health check with backend configuration and circuit breaker state.

    The service reports "degraded" while the WhatsApp circuit is open or the
    WhatsApp credentials are missing.
    """
    settings = container.settings
    whatsapp_configured = bool(settings.whatsapp_api_token and settings.whatsapp_phone_id)

    checks: Dict[str, Any] = {
        "storage_backend": settings.storage_backend,
        "notification_backend": settings.notification_backend,
        "whatsapp_configured": whatsapp_configured,
        "catch_up_enabled": settings.catch_up_enabled,
    }

    circuit_status = getattr(container.gateway, "get_circuit_breaker_status", None)
    whatsapp_available = True
    if circuit_status is not None:
        checks["whatsapp_circuit"] = circuit_status()
        whatsapp_available = checks["whatsapp_circuit"]["is_available"]

    overall_status = "healthy" if whatsapp_configured and whatsapp_available else "degraded"

    response = DetailedHealthResponse(
        status=overall_status,
        version=settings.service_version,
        uptime_seconds=_uptime(request),
        timestamp=datetime.now(timezone.utc),
        service_name=settings.service_name,
        checks=checks,
    )
    logger.info("Detailed health check completed", status=response.status, checks=checks)
    return response
