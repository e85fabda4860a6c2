"""
Inbound WhatsApp events: delivery status callbacks and client replies.

Any reply from a client parks every active case of that client on hold so
the automated ladder stops, and asks an agent to take over.
"""
from typing import Optional

import structlog

from app.core.exceptions import DatabaseError
from app.database.audit_repository import AuditSink
from app.database.case_repository import CaseStore
from app.database.conversation_repository import ConversationStore
from app.models.case import ActionKind, ActionMeta, CaseStatus, Outcome
from app.models.conversation import ConversationMessage, DeliveryStatus, MessageDirection, StatusEvent
from app.schemas.webhook import WebhookAck, WebhookMessage, WebhookPayload, WebhookStatus
from app.services.notification_service import NotificationSeverity, NotificationSink
from app.utils.clock import Clock
from app.utils.message_templates import clean_phone_number

logger = structlog.get_logger(__name__)

WEBHOOK_OBJECT = "whatsapp_business_account"

# Statuses still driven by automation; a reply takes them off the ladder.
ACTIVE_STATUSES = (
    CaseStatus.NEW.value,
    CaseStatus.PENDING.value,
    CaseStatus.REMINDER1_SENT.value,
    CaseStatus.REMINDER2_SENT.value,
    CaseStatus.REMINDER3_SENT.value,
    CaseStatus.TO_BE_CALLED.value,
)

PREVIEW_LENGTH = 100


def preview(content: Optional[str]) -> str:
    if not content:
        return ""
    if len(content) > PREVIEW_LENGTH:
        return content[:PREVIEW_LENGTH] + "..."
    return content


class InboundService:
    """Applies webhook notifications to the conversation log and the cases."""

    def __init__(
        self,
        cases: CaseStore,
        conversations: ConversationStore,
        audit: AuditSink,
        notifications: NotificationSink,
        clock: Clock,
        business_number: Optional[str] = None,
    ):
        self.cases = cases
        self.conversations = conversations
        self.audit = audit
        self.notifications = notifications
        self.clock = clock
        self.business_number = business_number

    async def handle_payload(self, payload: WebhookPayload) -> WebhookAck:
        """
        Process every message and status carried by a webhook notification.

        Store failures for one item are logged and do not stop the others.

        Args:
            payload: Parsed webhook body

        Returns:
            WebhookAck with processing counts
        """
        ack = WebhookAck()
        for entry in payload.entry:
            for change in entry.changes:
                value = change.value
                contact_name = None
                if value.contacts and value.contacts[0].profile:
                    contact_name = value.contacts[0].profile.name

                for message in value.messages:
                    try:
                        ack.cases_put_on_hold += await self.handle_message(message, contact_name)
                        ack.messages_processed += 1
                    except DatabaseError as e:
                        ack.success = False
                        logger.error("Failed to process inbound message", wa_message_id=message.id, error=str(e))

                for status in value.statuses:
                    try:
                        await self.handle_status(status)
                        ack.statuses_processed += 1
                    except DatabaseError as e:
                        ack.success = False
                        logger.error("Failed to process status update", wa_message_id=status.id, error=str(e))
        return ack

    async def handle_status(self, status: WebhookStatus) -> bool:
        """Apply a delivery status; unknown messages are stashed for later."""
        event = StatusEvent(
            wa_message_id=status.id,
            status=status.status,
            timestamp=status.occurred_at(),
            error_message=status.error_message(),
        )
        matched = await self.conversations.apply_status_event(event)
        logger.info("Status update processed", wa_message_id=status.id, status=status.status, matched=matched)
        return matched

    async def handle_message(self, message: WebhookMessage, contact_name: Optional[str] = None) -> int:
        """
        Record a client reply and put the client's active cases on hold.

        Returns:
            Number of cases moved to on hold
        """
        phone = clean_phone_number(message.from_phone)
        now = self.clock.now()
        content = message.content()

        conversation = await self.conversations.get_or_create_conversation(phone, name=contact_name)
        metadata = {"timestamp": message.timestamp, "contact_name": contact_name}
        metadata.update(message.media())
        await self.conversations.add_message(ConversationMessage(
            conversation_id=conversation.id,
            wa_message_id=message.id,
            direction=MessageDirection.INBOUND,
            message_type=message.type,
            content=content,
            from_phone=phone,
            to_phone=self.business_number,
            status=DeliveryStatus.DELIVERED.value,
            created_at=now,
            metadata=metadata,
        ))

        active = await self.cases.find_active_cases_for_phone(phone, ACTIVE_STATUSES)
        held = []
        for case in active:
            swapped = await self.cases.compare_and_swap_status(
                case.id,
                case.status,
                CaseStatus.ONHOLD.value,
                ActionMeta(action_kind=ActionKind.INBOUND_REPLY, acted_at=now, response_received_at=now),
            )
            if not swapped:
                logger.info("Case changed before it could be put on hold", case_id=case.id)
                continue
            held.append(case)
            try:
                await self.audit.append(
                    case.id, ActionKind.INBOUND_REPLY.value, Outcome.PUT_ON_HOLD, content, now
                )
            except DatabaseError as e:
                logger.error("Failed to append audit record", case_id=case.id, error=str(e))

        if held:
            logger.info("Client reply put cases on hold", phone=phone, cases=[c.id for c in held])
            await self.notifications.notify(
                "Réponse client - Action requise",
                f"Le client a répondu: \"{preview(content)}\" - Veuillez traiter ce dossier.",
                NotificationSeverity.ACTION_REQUIRED,
                f"/clients/{held[0].subject.id}",
            )
        else:
            await self.notifications.notify(
                "Réponse client",
                f"Nouveau message du client: \"{preview(content)}\"",
                NotificationSeverity.INFO,
                "/inbox",
            )
        return len(held)
