"""
Dependency injection for FastAPI application.

Collaborators are built once per application from settings and held in a
WorkflowContainer on ``app.state``. Drivers and services are assembled per
request from the container, so tests can swap any collaborator by
overriding ``get_container``.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from fastapi import Depends, Header, Request

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.config import Settings
from app.core.exceptions import ConfigurationError, CronAuthorizationError
from app.core.logging import get_logger
from app.database.audit_repository import AuditSink, InMemoryAuditSink, SupabaseAuditSink
from app.database.case_repository import CaseStore, InMemoryCaseStore, SupabaseCaseStore
from app.database.center_repository import CenterDirectory, InMemoryCenterDirectory, SupabaseCenterDirectory
from app.database.client import get_supabase_client
from app.database.conversation_repository import (
    ConversationStore,
    InMemoryConversationStore,
    SupabaseConversationStore,
)
from app.services.catchup_driver import CatchUpDriver
from app.services.followup_driver import FollowUpDriver
from app.services.inbound_service import InboundService
from app.services.notification_service import (
    InMemoryNotificationSink,
    NotificationService,
    NotificationSink,
    SupabaseNotificationSink,
)
from app.services.outreach_service import OutreachDefaults, OutreachService
from app.services.progression_driver import ProgressionDriver
from app.services.whatsapp_gateway import MessagingGateway, WhatsAppCloudGateway
from app.utils.business_hours import BusinessHours
from app.utils.clock import Clock, SystemClock

logger = get_logger(__name__)


@dataclass
class WorkflowContainer:
    """Every collaborator the drivers need, built from one Settings instance."""
    settings: Settings
    cases: CaseStore
    centers: CenterDirectory
    conversations: ConversationStore
    audit: AuditSink
    notifications: NotificationSink
    gateway: MessagingGateway
    clock: Clock
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def outreach_service(self) -> OutreachService:
        return OutreachService(
            gateway=self.gateway,
            centers=self.centers,
            conversations=self.conversations,
            clock=self.clock,
            defaults=OutreachDefaults(
                reminder_template=self.settings.default_reminder_template,
                template_language=self.settings.whatsapp_template_language,
                center_label=self.settings.default_center_label,
                center_network=self.settings.default_center_network,
                followup_template=self.settings.followup_template,
                followup_language=self.settings.followup_template_language,
                business_number=self.settings.whatsapp_business_number,
            ),
        )

    def business_hours(self) -> BusinessHours:
        return BusinessHours(
            timezone=self.settings.timezone,
            start_hour=self.settings.business_hour_start,
            end_hour=self.settings.business_hour_end,
            weekdays=frozenset(self.settings.business_days),
        )


def _circuit_breaker(service_name: str, settings: Settings) -> CircuitBreaker:
    return CircuitBreaker(
        service_name=service_name,
        config=CircuitBreakerConfig(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout_seconds,
        ),
    )


def build_container(settings: Settings) -> WorkflowContainer:
    """
    Build the application's collaborators from settings.

    Args:
        settings: Application settings

    Returns:
        WorkflowContainer for the configured backends

    Raises:
        ConfigurationError: A backend is selected without its settings
    """
    supabase_client = None
    if settings.storage_backend == "supabase" or settings.notification_backend == "supabase":
        supabase_client = get_supabase_client(settings)

    if settings.storage_backend == "supabase":
        attempts = settings.read_retry_max_attempts
        cases: CaseStore = SupabaseCaseStore(supabase_client, attempts)
        centers: CenterDirectory = SupabaseCenterDirectory(supabase_client, attempts)
        conversations: ConversationStore = SupabaseConversationStore(supabase_client, attempts)
        audit: AuditSink = SupabaseAuditSink(supabase_client)
    else:
        cases = InMemoryCaseStore()
        centers = InMemoryCenterDirectory()
        conversations = InMemoryConversationStore()
        audit = InMemoryAuditSink()

    if settings.notification_backend == "supabase":
        notifications: NotificationSink = SupabaseNotificationSink(
            supabase_client, settings.notification_admin_roles
        )
    elif settings.notification_backend == "http":
        if not settings.notification_service_url:
            raise ConfigurationError(
                "Notification service URL is required for the http backend",
                setting="notification_service_url",
            )
        notifications = NotificationService(
            base_url=settings.notification_service_url,
            timeout_seconds=settings.notification_timeout_seconds,
            circuit_breaker=_circuit_breaker("Notification Service", settings),
        )
    else:
        notifications = InMemoryNotificationSink()

    gateway = WhatsAppCloudGateway(
        api_token=settings.whatsapp_api_token,
        phone_id=settings.whatsapp_phone_id,
        conversations=conversations,
        base_url=settings.whatsapp_api_base_url,
        api_version=settings.whatsapp_api_version,
        timeout_seconds=settings.whatsapp_timeout_seconds,
        circuit_breaker=_circuit_breaker("WhatsApp", settings),
    )

    logger.info(
        "Workflow container built",
        storage_backend=settings.storage_backend,
        notification_backend=settings.notification_backend,
        whatsapp_configured=bool(settings.whatsapp_api_token and settings.whatsapp_phone_id),
    )

    return WorkflowContainer(
        settings=settings,
        cases=cases,
        centers=centers,
        conversations=conversations,
        audit=audit,
        notifications=notifications,
        gateway=gateway,
        clock=SystemClock(settings.timezone),
    )


def get_container(request: Request) -> WorkflowContainer:
    """Container attached to the running application."""
    return request.app.state.container


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    container: WorkflowContainer = Depends(get_container),
) -> None:
    """
    Check the scheduler's bearer token when CRON_SECRET is configured.

    Raises:
        CronAuthorizationError: Secret configured and not presented
    """
    secret = container.settings.cron_secret
    if not secret:
        return
    if authorization != f"Bearer {secret}":
        logger.warning("Rejected cron trigger with invalid secret")
        raise CronAuthorizationError()


def get_progression_driver(container: WorkflowContainer = Depends(get_container)) -> ProgressionDriver:
    return ProgressionDriver(
        cases=container.cases,
        audit=container.audit,
        notifications=container.notifications,
        clock=container.clock,
        outreach=container.outreach_service(),
        import_grace_minutes=container.settings.import_grace_minutes,
        send_delay_seconds=container.settings.send_delay_seconds,
        sleep=container.sleep,
    )


def get_followup_driver(container: WorkflowContainer = Depends(get_container)) -> FollowUpDriver:
    return FollowUpDriver(
        cases=container.cases,
        audit=container.audit,
        notifications=container.notifications,
        clock=container.clock,
        outreach=container.outreach_service(),
        gateway=container.gateway,
        business_hours=container.business_hours(),
        min_dwell_hours=container.settings.followup_min_dwell_hours,
        send_delay_seconds=container.settings.send_delay_seconds,
        sleep=container.sleep,
    )


def get_catchup_driver(container: WorkflowContainer = Depends(get_container)) -> CatchUpDriver:
    return CatchUpDriver(
        cases=container.cases,
        audit=container.audit,
        notifications=container.notifications,
        clock=container.clock,
        outreach=container.outreach_service(),
        send_delay_seconds=container.settings.send_delay_seconds,
        sleep=container.sleep,
    )


def get_inbound_service(container: WorkflowContainer = Depends(get_container)) -> InboundService:
    return InboundService(
        cases=container.cases,
        conversations=container.conversations,
        audit=container.audit,
        notifications=container.notifications,
        clock=container.clock,
        business_number=container.settings.whatsapp_business_number,
    )
