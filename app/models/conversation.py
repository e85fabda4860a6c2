"""
Conversation and message records kept alongside outbound WhatsApp traffic.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import uuid4
from pydantic import BaseModel, Field


class MessageDirection(str, Enum):
    """Message direction enumeration"""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DeliveryStatus(str, Enum):
    """Provider delivery status, in increasing order of progress"""
    FAILED = "failed"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


DELIVERY_STATUS_PRIORITY: Dict[str, int] = {
    DeliveryStatus.FAILED.value: 0,
    DeliveryStatus.SENT.value: 1,
    DeliveryStatus.DELIVERED.value: 2,
    DeliveryStatus.READ.value: 3,
}


def delivery_priority(status: Optional[str]) -> int:
    """Rank a delivery status; unknown values rank below everything."""
    if status is None:
        return -1
    return DELIVERY_STATUS_PRIORITY.get(str(status), -1)


class Conversation(BaseModel):
    """WhatsApp conversation with one client"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    subject_id: Optional[str] = None
    client_phone: str
    client_name: Optional[str] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    status: str = "open"


class ConversationMessage(BaseModel):
    """Single message inside a conversation"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    conversation_id: str
    wa_message_id: Optional[str] = None
    direction: MessageDirection
    message_type: str = "template"
    template_name: Optional[str] = None
    content: Optional[str] = None
    from_phone: Optional[str] = None
    to_phone: Optional[str] = None
    status: str = DeliveryStatus.SENT.value
    error_message: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class StatusEvent(BaseModel):
    """Delivery status callback received from the provider"""
    wa_message_id: str
    status: str
    timestamp: datetime
    error_message: Optional[str] = None


class ReadReceipt(BaseModel):
    """Read state of an outbound message"""
    is_read: bool
    read_at: Optional[datetime] = None
