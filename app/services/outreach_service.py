"""
Shared outreach routine used by every driver that sends a template.

Validates the contact channel, resolves the center and template, waits for
its pacing turn, sends, and records the outbound message in the
conversation log.
"""
from dataclasses import dataclass
from typing import Optional

import structlog

from app.core.exceptions import ContactChannelUnavailableError, DatabaseError
from app.database.center_repository import CenterDirectory
from app.database.conversation_repository import ConversationStore
from app.models.case import Case, Subject
from app.models.conversation import ConversationMessage, DeliveryStatus, MessageDirection
from app.services.whatsapp_gateway import MessagingGateway
from app.utils.clock import Clock
from app.utils.message_templates import (
    OutreachMessage,
    build_followup_message,
    build_reminder_message,
    clean_phone_number,
    is_valid_destination,
)
from app.utils.pacing import CallPacer

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OutreachResult:
    delivery_id: str
    message: OutreachMessage
    destination: str


@dataclass(frozen=True)
class OutreachDefaults:
    """Template and display fallbacks taken from settings."""
    reminder_template: str = "rappel_visite_technique_vf"
    template_language: str = "en"
    center_label: str = "Notre centre"
    center_network: str = "AUTOSUR"
    followup_template: str = "assistance_rdv"
    followup_language: str = "fr"
    business_number: Optional[str] = None


def require_channel(subject: Subject) -> str:
    """
    Return the cleaned destination for a subject.

    Raises:
        ContactChannelUnavailableError: No usable WhatsApp destination
    """
    if subject.whatsapp_available is False:
        raise ContactChannelUnavailableError(
            "Client is not reachable on WhatsApp", subject_id=subject.id
        )
    if not subject.phone:
        raise ContactChannelUnavailableError("Client has no phone number", subject_id=subject.id)
    if not is_valid_destination(subject.phone):
        raise ContactChannelUnavailableError(
            "Client phone number is invalid", subject_id=subject.id, value=subject.phone
        )
    return clean_phone_number(subject.phone)


class OutreachService:
    """Sends reminder and follow-up templates on behalf of the drivers."""

    def __init__(
        self,
        gateway: MessagingGateway,
        centers: CenterDirectory,
        conversations: ConversationStore,
        clock: Clock,
        defaults: Optional[OutreachDefaults] = None,
    ):
        self.gateway = gateway
        self.centers = centers
        self.conversations = conversations
        self.clock = clock
        self.defaults = defaults or OutreachDefaults()

    async def send_reminder(self, case: Case, pacer: CallPacer) -> OutreachResult:
        """
        Send the due-date reminder for a case.

        Args:
            case: Case being reminded (its status is not touched here)
            pacer: Run-scoped pacer shared by every external call of the run

        Returns:
            OutreachResult with the provider delivery id

        Raises:
            ContactChannelUnavailableError: No usable destination
            GatewayError: The provider rejected or failed the send
        """
        destination = require_channel(case.subject)
        center = await self.centers.get_center(case.subject.center_id, case.subject.center_name)

        message = build_reminder_message(
            case.subject,
            case.due_date,
            center,
            default_template=self.defaults.reminder_template,
            language=self.defaults.template_language,
            default_label=self.defaults.center_label,
            default_network=self.defaults.center_network,
        )
        return await self._send(case, destination, message, pacer)

    async def send_follow_up(self, case: Case, pacer: CallPacer) -> OutreachResult:
        """Send the "shall we call you?" prompt after an unanswered reminder."""
        destination = require_channel(case.subject)
        message = build_followup_message(
            case.subject,
            template_name=self.defaults.followup_template,
            language=self.defaults.followup_language,
        )
        return await self._send(case, destination, message, pacer)

    async def _send(
        self, case: Case, destination: str, message: OutreachMessage, pacer: CallPacer
    ) -> OutreachResult:
        await pacer.wait_turn()
        delivery_id = await self.gateway.send_template(
            destination, message.template_name, message.language, message.variables
        )
        await self._record_outbound(case, destination, message, delivery_id)
        return OutreachResult(delivery_id=delivery_id, message=message, destination=destination)

    async def _record_outbound(
        self, case: Case, destination: str, message: OutreachMessage, delivery_id: str
    ) -> None:
        """Log the sent template in the conversation; the send already happened, so failures only log."""
        try:
            conversation = await self.conversations.get_or_create_conversation(
                destination, subject_id=case.subject.id, name=case.subject.name
            )
            await self.conversations.add_message(ConversationMessage(
                conversation_id=conversation.id,
                wa_message_id=delivery_id,
                direction=MessageDirection.OUTBOUND,
                message_type="template",
                template_name=message.template_name,
                content=message.content,
                from_phone=self.defaults.business_number,
                to_phone=destination,
                status=DeliveryStatus.SENT.value,
                created_at=self.clock.now(),
                metadata={"case_id": case.id, "language": message.language},
            ))
        except DatabaseError as e:
            logger.error(
                "Failed to record outbound message",
                case_id=case.id,
                wa_message_id=delivery_id,
                error=str(e),
            )
