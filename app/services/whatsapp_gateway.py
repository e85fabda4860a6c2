"""
Messaging gateway: outbound WhatsApp templates and delivery-state queries.

Sends go to the WhatsApp Cloud API. Read receipts and inbound replies reach
the service through the webhook, so the query side reads the conversation
log that the webhook keeps up to date.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx
import structlog

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.exceptions import (
    ExternalServiceRateLimitError,
    GatewayError,
    GatewayTimeoutError,
)
from app.database.conversation_repository import ConversationStore
from app.models.conversation import ConversationMessage, DeliveryStatus, ReadReceipt
from app.utils.message_templates import TemplateVariables, clean_phone_number

logger = structlog.get_logger(__name__)


class MessagingGateway(ABC):
    """Opaque send/query capability over the messaging channel."""

    @abstractmethod
    async def send_template(
        self,
        destination: str,
        template_name: str,
        language: str,
        variables: TemplateVariables,
    ) -> str:
        """
        Send a registered template.

        Returns:
            Provider delivery id

        Raises:
            GatewayError: The provider did not accept the message
        """

    @abstractmethod
    async def latest_outbound_template(self, subject_id: str) -> Optional[ConversationMessage]:
        """Most recent template sent to the subject, or None."""

    @abstractmethod
    async def get_read_receipt(self, message_ref: str) -> ReadReceipt:
        """Whether the message was read, and when."""

    @abstractmethod
    async def has_inbound_since(self, conversation_ref: str, since: datetime) -> bool:
        """True when the client wrote in the conversation after ``since``."""


def build_template_components(variables: TemplateVariables) -> List[Dict[str, Any]]:
    """Graph API ``components`` for a template send."""
    components: List[Dict[str, Any]] = []

    if variables.body_parameters:
        components.append({
            "type": "body",
            "parameters": [
                {"type": "text", "text": value or "N/A"} for value in variables.body_parameters
            ],
        })

    button_index = 0
    if variables.url_button is not None:
        components.append({
            "type": "button",
            "sub_type": "url",
            "index": button_index,
            "parameters": [{"type": "text", "text": variables.url_button}],
        })
        button_index += 1

    if variables.call_button is not None:
        components.append({
            "type": "button",
            "sub_type": "VOICE_CALL",
            "index": button_index,
            "parameters": [{"type": "text", "text": clean_phone_number(variables.call_button)}],
        })

    return components


class WhatsAppCloudGateway(MessagingGateway):
    """Gateway backed by the WhatsApp Cloud API (Meta Graph API)."""

    def __init__(
        self,
        api_token: Optional[str],
        phone_id: Optional[str],
        conversations: ConversationStore,
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v17.0",
        timeout_seconds: float = 30.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_token = api_token
        self.phone_id = phone_id
        self.conversations = conversations
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout_seconds = timeout_seconds
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            service_name="WhatsApp",
            config=CircuitBreakerConfig(),
        )
        self._http_client = http_client

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.phone_id}/messages"

    async def send_template(
        self,
        destination: str,
        template_name: str,
        language: str,
        variables: TemplateVariables,
    ) -> str:
        if not self.api_token or not self.phone_id:
            raise GatewayError("Missing WhatsApp credentials")

        template: Dict[str, Any] = {"name": template_name, "language": {"code": language}}
        components = build_template_components(variables)
        if components:
            template["components"] = components

        payload = {
            "messaging_product": "whatsapp",
            "to": clean_phone_number(destination),
            "type": "template",
            "template": template,
        }
        result = await self.circuit_breaker.call_async(self._post_message, payload)
        if isinstance(result, GatewayError):
            raise result
        return result

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_token}"}
        if self._http_client is not None:
            return await self._http_client.post(
                self.messages_url, json=payload, headers=headers, timeout=self.timeout_seconds
            )
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(self.messages_url, json=payload, headers=headers)

    async def _post_message(self, payload: Dict[str, Any]) -> Union[str, GatewayError]:
        """
        Execute the Graph API call and extract the message id.

        Transport errors, timeouts, 429 and 5xx are raised and count against
        the circuit breaker. A rejection of this one message (4xx, missing
        message id) is returned instead, since the provider itself answered.
        """
        template_name = payload["template"]["name"]

        try:
            logger.info("Sending WhatsApp template", template=template_name, to=payload["to"])
            response = await self._post(payload)
        except httpx.TimeoutException as e:
            logger.error("Timeout sending WhatsApp template", template=template_name, error=str(e))
            raise GatewayTimeoutError(self.timeout_seconds)
        except httpx.TransportError as e:
            logger.error("Connection error to WhatsApp API", template=template_name, error=str(e))
            raise GatewayError(f"Connection error: {str(e)}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise ExternalServiceRateLimitError(
                "WhatsApp", retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )

        if response.is_error:
            message = (data.get("error") or {}).get("message") or "API Error"
            logger.error(
                "WhatsApp API error",
                template=template_name,
                status_code=response.status_code,
                error=message,
            )
            if response.status_code >= 500:
                raise GatewayError(message, status_code=response.status_code)
            return GatewayError(message, status_code=response.status_code)

        messages = data.get("messages") or []
        if not messages or not messages[0].get("id"):
            return GatewayError("WhatsApp API response carried no message id", status_code=response.status_code)

        message_id = messages[0]["id"]
        logger.info("WhatsApp template sent", template=template_name, wa_message_id=message_id)
        return message_id

    async def latest_outbound_template(self, subject_id: str) -> Optional[ConversationMessage]:
        conversation = await self.conversations.find_conversation_for_subject(subject_id)
        if conversation is None:
            return None
        return await self.conversations.latest_outbound_template(conversation.id)

    async def get_read_receipt(self, message_ref: str) -> ReadReceipt:
        message = await self.conversations.get_message(message_ref)
        if message is None or message.status != DeliveryStatus.READ.value:
            return ReadReceipt(is_read=False)
        return ReadReceipt(is_read=True, read_at=message.read_at)

    async def has_inbound_since(self, conversation_ref: str, since: datetime) -> bool:
        return await self.conversations.has_inbound_since(conversation_ref, since)

    def get_circuit_breaker_status(self) -> Dict[str, Any]:
        return self.circuit_breaker.get_status()
