"""
Conversation and message log for WhatsApp traffic.

Delivery status callbacks can arrive before the send bookkeeping has stored
the outbound message. Such events are stashed and applied when the message
is recorded. A status is never downgraded (failed < sent < delivered < read).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from supabase import Client

from app.core.retry import create_retry_decorator, get_database_retry_config
from app.database.client import execute_query
from app.models.conversation import (
    Conversation,
    ConversationMessage,
    DeliveryStatus,
    MessageDirection,
    StatusEvent,
    delivery_priority,
)
from app.utils.message_templates import clean_phone_number

logger = structlog.get_logger(__name__)

CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "messages"
STATUS_LOG_TABLE = "whatsapp_status_log"

MESSAGE_PREVIEW_LENGTH = 100


def is_upgrade(current: Optional[str], incoming: str) -> bool:
    """True when ``incoming`` is strictly further along than ``current``."""
    return delivery_priority(incoming) > delivery_priority(current)


def best_event(events: List[StatusEvent]) -> Optional[StatusEvent]:
    """Most advanced status among stashed events (earliest wins on ties)."""
    best = None
    for event in events:
        if best is None or delivery_priority(event.status) > delivery_priority(best.status):
            best = event
    return best


def status_update(event: StatusEvent) -> Dict[str, Any]:
    """Column changes for applying a status event to a stored message."""
    changes: Dict[str, Any] = {"status": event.status}
    if event.status == DeliveryStatus.READ.value:
        changes["read_at"] = event.timestamp
    if event.status == DeliveryStatus.FAILED.value and event.error_message:
        changes["error_message"] = event.error_message
    return changes


class ConversationStore(ABC):
    """Interface to the conversation/message log."""

    @abstractmethod
    async def get_or_create_conversation(
        self, phone: str, subject_id: Optional[str] = None, name: Optional[str] = None
    ) -> Conversation:
        """Conversation for a phone number, created on first contact."""

    @abstractmethod
    async def find_conversation_for_subject(self, subject_id: str) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def add_message(self, message: ConversationMessage) -> ConversationMessage:
        """
        Append a message and reconcile any status events stashed for it.

        Returns:
            The stored message, with its reconciled status
        """

    @abstractmethod
    async def latest_outbound_template(self, conversation_id: str) -> Optional[ConversationMessage]:
        """Most recent outbound template message of a conversation."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[ConversationMessage]:
        pass

    @abstractmethod
    async def has_inbound_since(self, conversation_id: str, since: datetime) -> bool:
        """Whether the client wrote anything strictly after ``since``."""

    @abstractmethod
    async def apply_status_event(self, event: StatusEvent) -> bool:
        """
        Apply a delivery status callback.

        Returns:
            True if a stored message matched, False if the event was stashed
        """


class InMemoryConversationStore(ConversationStore):

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.messages: List[ConversationMessage] = []
        self.pending_events: List[StatusEvent] = []

    async def get_or_create_conversation(
        self, phone: str, subject_id: Optional[str] = None, name: Optional[str] = None
    ) -> Conversation:
        clean = clean_phone_number(phone)
        for conversation in self.conversations.values():
            if conversation.client_phone == clean:
                if subject_id and not conversation.subject_id:
                    conversation.subject_id = subject_id
                return conversation

        conversation = Conversation(subject_id=subject_id, client_phone=clean, client_name=name)
        self.conversations[conversation.id] = conversation
        return conversation

    async def find_conversation_for_subject(self, subject_id: str) -> Optional[Conversation]:
        for conversation in self.conversations.values():
            if conversation.subject_id == subject_id:
                return conversation
        return None

    async def add_message(self, message: ConversationMessage) -> ConversationMessage:
        stored = message.model_copy(deep=True)
        if stored.wa_message_id:
            stashed = [e for e in self.pending_events if e.wa_message_id == stored.wa_message_id]
            event = best_event(stashed)
            if event is not None and is_upgrade(stored.status, event.status):
                for key, value in status_update(event).items():
                    setattr(stored, key, value)
            self.pending_events = [e for e in self.pending_events if e not in stashed]

        self.messages.append(stored)

        conversation = self.conversations.get(stored.conversation_id)
        if conversation is not None:
            conversation.last_message = (stored.content or f"[{stored.message_type}]")[:MESSAGE_PREVIEW_LENGTH]
            conversation.last_message_at = stored.created_at
        return stored.model_copy(deep=True)

    async def latest_outbound_template(self, conversation_id: str) -> Optional[ConversationMessage]:
        outbound = [
            m for m in self.messages
            if m.conversation_id == conversation_id
            and m.direction == MessageDirection.OUTBOUND
            and m.message_type == "template"
        ]
        if not outbound:
            return None
        return max(outbound, key=lambda m: m.created_at).model_copy(deep=True)

    async def get_message(self, message_id: str) -> Optional[ConversationMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message.model_copy(deep=True)
        return None

    async def has_inbound_since(self, conversation_id: str, since: datetime) -> bool:
        return any(
            m.conversation_id == conversation_id
            and m.direction == MessageDirection.INBOUND
            and m.created_at > since
            for m in self.messages
        )

    async def apply_status_event(self, event: StatusEvent) -> bool:
        for message in self.messages:
            if message.wa_message_id == event.wa_message_id:
                if is_upgrade(message.status, event.status):
                    for key, value in status_update(event).items():
                        setattr(message, key, value)
                return True

        self.pending_events.append(event)
        return False


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _conversation_from_row(row: Dict[str, Any]) -> Conversation:
    return Conversation(
        id=str(row["id"]),
        subject_id=str(row["client_id"]) if row.get("client_id") else None,
        client_phone=row.get("client_phone") or "",
        client_name=row.get("client_name"),
        last_message=row.get("last_message"),
        last_message_at=_parse_datetime(row.get("last_message_at")),
        status=row.get("status") or "open",
    )


def _message_from_row(row: Dict[str, Any]) -> ConversationMessage:
    return ConversationMessage(
        id=str(row["id"]),
        conversation_id=str(row["conversation_id"]),
        wa_message_id=row.get("wa_message_id"),
        direction=MessageDirection(row.get("direction") or MessageDirection.OUTBOUND.value),
        message_type=row.get("message_type") or "template",
        template_name=row.get("template_name"),
        content=row.get("content"),
        from_phone=row.get("from_phone"),
        to_phone=row.get("to_phone"),
        status=row.get("status") or DeliveryStatus.SENT.value,
        error_message=row.get("error_message"),
        created_at=_parse_datetime(row.get("created_at")),
        read_at=_parse_datetime(row.get("read_at")),
        metadata=row.get("metadata"),
    )


def _serialize(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in values.items()}


class SupabaseConversationStore(ConversationStore):
    """Backed by the ``conversations``, ``messages`` and ``whatsapp_status_log`` tables."""

    def __init__(self, client: Client, read_retry_attempts: int = 3):
        self.client = client
        self._retry = create_retry_decorator(
            get_database_retry_config(read_retry_attempts), operation="conversation read"
        )

    def _read(self, query: Any, operation: str) -> List[Dict[str, Any]]:
        return self._retry(execute_query)(query, operation).data or []

    async def get_or_create_conversation(
        self, phone: str, subject_id: Optional[str] = None, name: Optional[str] = None
    ) -> Conversation:
        clean = clean_phone_number(phone)
        rows = self._read(
            self.client.table(CONVERSATIONS_TABLE).select("*").eq("client_phone", clean).limit(1),
            "find_conversation_by_phone",
        )
        if rows:
            conversation = _conversation_from_row(rows[0])
            if subject_id and not conversation.subject_id:
                execute_query(
                    self.client.table(CONVERSATIONS_TABLE).update({"client_id": subject_id}).eq("id", conversation.id),
                    "link_conversation_to_client",
                )
                conversation.subject_id = subject_id
            return conversation

        response = execute_query(
            self.client.table(CONVERSATIONS_TABLE).insert({
                "client_id": subject_id,
                "client_phone": clean,
                "client_name": name,
                "status": "open",
                "unread_count": 0,
            }),
            "create_conversation",
        )
        logger.info("Conversation created", client_phone=clean, subject_id=subject_id)
        return _conversation_from_row(response.data[0])

    async def find_conversation_for_subject(self, subject_id: str) -> Optional[Conversation]:
        rows = self._read(
            self.client.table(CONVERSATIONS_TABLE).select("*").eq("client_id", subject_id).limit(1),
            "find_conversation_for_subject",
        )
        return _conversation_from_row(rows[0]) if rows else None

    async def add_message(self, message: ConversationMessage) -> ConversationMessage:
        row = message.model_dump(mode="json")
        response = execute_query(self.client.table(MESSAGES_TABLE).insert(row), "add_message")
        stored = _message_from_row(response.data[0])

        if stored.wa_message_id:
            stored = self._reconcile(stored)

        execute_query(
            self.client.table(CONVERSATIONS_TABLE)
            .update({
                "last_message": (stored.content or f"[{stored.message_type}]")[:MESSAGE_PREVIEW_LENGTH],
                "last_message_at": stored.created_at.isoformat(),
            })
            .eq("id", stored.conversation_id),
            "touch_conversation",
        )
        return stored

    def _reconcile(self, stored: ConversationMessage) -> ConversationMessage:
        rows = self._read(
            self.client.table(STATUS_LOG_TABLE)
            .select("*")
            .eq("wa_message_id", stored.wa_message_id)
            .eq("processed", False),
            "pending_status_events",
        )
        if not rows:
            return stored

        events = [
            StatusEvent(
                wa_message_id=row["wa_message_id"],
                status=row["status"],
                timestamp=_parse_datetime(row.get("created_at")) or stored.created_at,
                error_message=row.get("error_message"),
            )
            for row in rows
        ]
        event = best_event(events)
        if event is not None and is_upgrade(stored.status, event.status):
            changes = status_update(event)
            execute_query(
                self.client.table(MESSAGES_TABLE).update(_serialize(changes)).eq("id", stored.id),
                "apply_stashed_status",
            )
            stored = stored.model_copy(update=changes)

        execute_query(
            self.client.table(STATUS_LOG_TABLE)
            .update({"processed": True, "processed_at": datetime.now().astimezone().isoformat(), "message_id": stored.id})
            .in_("id", [row["id"] for row in rows]),
            "mark_status_events_processed",
        )
        logger.info(
            "Stashed status events reconciled",
            wa_message_id=stored.wa_message_id,
            events=len(rows),
            status=stored.status,
        )
        return stored

    async def latest_outbound_template(self, conversation_id: str) -> Optional[ConversationMessage]:
        rows = self._read(
            self.client.table(MESSAGES_TABLE)
            .select("*")
            .eq("conversation_id", conversation_id)
            .eq("direction", MessageDirection.OUTBOUND.value)
            .eq("message_type", "template")
            .order("created_at", desc=True)
            .limit(1),
            "latest_outbound_template",
        )
        return _message_from_row(rows[0]) if rows else None

    async def get_message(self, message_id: str) -> Optional[ConversationMessage]:
        rows = self._read(
            self.client.table(MESSAGES_TABLE).select("*").eq("id", message_id).limit(1),
            "get_message",
        )
        return _message_from_row(rows[0]) if rows else None

    async def has_inbound_since(self, conversation_id: str, since: datetime) -> bool:
        rows = self._read(
            self.client.table(MESSAGES_TABLE)
            .select("id")
            .eq("conversation_id", conversation_id)
            .eq("direction", MessageDirection.INBOUND.value)
            .gt("created_at", since.isoformat())
            .limit(1),
            "has_inbound_since",
        )
        return bool(rows)

    async def apply_status_event(self, event: StatusEvent) -> bool:
        rows = self._read(
            self.client.table(MESSAGES_TABLE)
            .select("id, status")
            .eq("wa_message_id", event.wa_message_id)
            .limit(1),
            "find_message_by_wa_id",
        )
        if not rows:
            execute_query(
                self.client.table(STATUS_LOG_TABLE).insert({
                    "wa_message_id": event.wa_message_id,
                    "status": event.status,
                    "error_message": event.error_message,
                    "processed": False,
                }),
                "stash_status_event",
            )
            logger.info("Status event stashed for unknown message", wa_message_id=event.wa_message_id, status=event.status)
            return False

        row = rows[0]
        if is_upgrade(row.get("status"), event.status):
            execute_query(
                self.client.table(MESSAGES_TABLE).update(_serialize(status_update(event))).eq("id", row["id"]),
                "apply_status_event",
            )
        return True
