"""
Notification sinks for admin alerts and run reports.

Notifications are best-effort: every sink returns False on failure instead
of raising, so a notification problem never changes a case outcome.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from abc import ABC, abstractmethod

import httpx
import structlog
from pydantic import BaseModel
from supabase import Client

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.exceptions import DatabaseError, ServiceUnavailableError
from app.database.client import execute_query

logger = structlog.get_logger(__name__)


class NotificationSeverity(str, Enum):
    """Notification type shown in the admin inbox"""
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ACTION_REQUIRED = "action_required"


class Notification(BaseModel):
    title: str
    body: str
    severity: NotificationSeverity
    link_ref: Optional[str] = None


class NotificationSink(ABC):

    @abstractmethod
    async def notify(
        self,
        title: str,
        body: str,
        severity: NotificationSeverity,
        link_ref: Optional[str] = None,
    ) -> bool:
        """
        Raise a human-facing notification.

        Returns:
            True if delivered, False otherwise
        """


class InMemoryNotificationSink(NotificationSink):

    def __init__(self):
        self.notifications: List[Notification] = []

    async def notify(
        self,
        title: str,
        body: str,
        severity: NotificationSeverity,
        link_ref: Optional[str] = None,
    ) -> bool:
        self.notifications.append(
            Notification(title=title, body=body, severity=severity, link_ref=link_ref)
        )
        return True


class SupabaseNotificationSink(NotificationSink):
    """Inserts one ``notifications`` row per admin user."""

    def __init__(self, client: Client, admin_roles: Sequence[str] = ("admin", "superadmin")):
        self.client = client
        self.admin_roles = list(admin_roles)

    async def notify(
        self,
        title: str,
        body: str,
        severity: NotificationSeverity,
        link_ref: Optional[str] = None,
    ) -> bool:
        try:
            admins = execute_query(
                self.client.table("user_profiles").select("id").in_("role", self.admin_roles),
                "find_admin_users",
            ).data or []

            if not admins:
                logger.warning("No admin users to notify", title=title)
                return False

            rows = [
                {
                    "user_id": admin["id"],
                    "title": title,
                    "message": body,
                    "type": severity.value,
                    "link": link_ref,
                }
                for admin in admins
            ]
            execute_query(self.client.table("notifications").insert(rows), "insert_notifications")

        except DatabaseError as e:
            logger.error("Failed to create admin notifications", title=title, error=str(e))
            return False

        logger.info("Admin notifications created", title=title, severity=severity.value, count=len(rows))
        return True


class NotificationService(NotificationSink):
    """Sends notifications to the external Notification Service over HTTP."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            service_name="Notification Service",
            config=CircuitBreakerConfig(),
        )
        self._http_client = http_client

    async def notify(
        self,
        title: str,
        body: str,
        severity: NotificationSeverity,
        link_ref: Optional[str] = None,
    ) -> bool:
        notification_data = {
            "type": severity.value,
            "subject": title,
            "message": body,
            "link": link_ref,
            "created_at": datetime.now().astimezone().isoformat(),
        }
        return await self._send_notification(notification_data)

    async def _send_notification(self, notification_data: Dict[str, Any]) -> bool:
        """
        Send notification to Notification Service.

        Args:
            notification_data: Notification payload

        Returns:
            True if successful, False otherwise
        """
        try:
            return await self.circuit_breaker.call_async(
                self._send_notification_internal, notification_data
            )
        except ServiceUnavailableError as e:
            logger.error(
                "Notification service unavailable",
                notification_type=notification_data.get("type"),
                error=str(e),
            )
            return False

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(url, json=payload, timeout=self.timeout_seconds)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(url, json=payload)

    async def _send_notification_internal(self, notification_data: Dict[str, Any]) -> bool:
        """Execute notification sending."""
        url = f"{self.base_url}/notifications/send"

        try:
            logger.info(
                "Sending notification",
                service="Notification Service",
                notification_type=notification_data.get("type"),
                url=url,
            )
            response = await self._post(url, notification_data)
            response.raise_for_status()

        except httpx.TimeoutException as e:
            logger.error(
                "Timeout sending notification",
                service="Notification Service",
                notification_type=notification_data.get("type"),
                timeout=self.timeout_seconds,
                error=str(e),
            )
            raise ServiceUnavailableError(
                "Notification Service",
                f"Request timeout after {self.timeout_seconds} seconds",
            )

        except httpx.ConnectError as e:
            logger.error(
                "Connection error to Notification Service",
                notification_type=notification_data.get("type"),
                url=url,
                error=str(e),
            )
            raise ServiceUnavailableError("Notification Service", f"Connection error: {str(e)}")

        except httpx.HTTPStatusError as e:
            logger.error(
                "HTTP error from Notification Service",
                notification_type=notification_data.get("type"),
                status_code=e.response.status_code,
                error=str(e),
            )
            if e.response.status_code >= 500:
                raise ServiceUnavailableError(
                    "Notification Service", f"Server error: {e.response.status_code}"
                )
            # 4xx: the payload was rejected, the service itself is fine
            logger.warning(
                "Notification rejected by service",
                notification_type=notification_data.get("type"),
                status_code=e.response.status_code,
            )
            return False

        logger.info(
            "Notification sent successfully",
            service="Notification Service",
            notification_type=notification_data.get("type"),
        )
        return True

    def get_circuit_breaker_status(self) -> Dict[str, Any]:
        """Get the current status of the circuit breaker."""
        return self.circuit_breaker.get_status()
