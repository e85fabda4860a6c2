"""
Pydantic models for WhatsApp Cloud API webhook payloads.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class WebhookContactProfile(BaseModel):
    name: Optional[str] = None


class WebhookContact(BaseModel):
    profile: Optional[WebhookContactProfile] = None
    wa_id: Optional[str] = None


class WebhookText(BaseModel):
    body: str


class WebhookButton(BaseModel):
    text: Optional[str] = None
    payload: Optional[str] = None


class WebhookReply(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class WebhookInteractive(BaseModel):
    type: Optional[str] = None
    button_reply: Optional[WebhookReply] = None
    list_reply: Optional[WebhookReply] = None


class WebhookMessage(BaseModel):
    """Inbound client message"""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_phone: str = Field(..., alias="from")
    id: str
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[WebhookText] = None
    button: Optional[WebhookButton] = None
    interactive: Optional[WebhookInteractive] = None

    def content(self) -> Optional[str]:
        """Readable text of the message, whatever its type."""
        if self.text:
            return self.text.body
        if self.button and self.button.text:
            return self.button.text
        if self.interactive:
            for reply in (self.interactive.button_reply, self.interactive.list_reply):
                if reply and reply.title:
                    return reply.title
        extra = self.model_extra or {}
        for media in ("image", "document", "video"):
            caption = (extra.get(media) or {}).get("caption")
            if caption:
                return caption
        return None

    def media(self) -> Dict[str, Any]:
        return {k: v for k, v in (self.model_extra or {}).items() if isinstance(v, dict)}


class WebhookError(BaseModel):
    code: Optional[int] = None
    title: Optional[str] = None


class WebhookStatus(BaseModel):
    """Delivery status callback for an outbound message"""
    id: str
    status: str
    timestamp: Optional[str] = None
    recipient_id: Optional[str] = None
    errors: List[WebhookError] = []

    def occurred_at(self) -> datetime:
        if self.timestamp and self.timestamp.isdigit():
            return datetime.fromtimestamp(int(self.timestamp), tz=timezone.utc)
        return datetime.now(timezone.utc)

    def error_message(self) -> Optional[str]:
        if not self.errors:
            return None
        return "; ".join(f"[{e.code}] {e.title}" for e in self.errors)


class WebhookValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    contacts: List[WebhookContact] = []
    messages: List[WebhookMessage] = []
    statuses: List[WebhookStatus] = []


class WebhookChange(BaseModel):
    field: Optional[str] = None
    value: WebhookValue


class WebhookEntry(BaseModel):
    id: Optional[str] = None
    changes: List[WebhookChange] = []


class WebhookPayload(BaseModel):
    """Top-level webhook notification"""
    object: str
    entry: List[WebhookEntry] = []

    model_config = {
        "json_schema_extra": {
            "example": {
                "object": "whatsapp_business_account",
                "entry": [{
                    "id": "1234567890",
                    "changes": [{
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "contacts": [{"profile": {"name": "Jean Dupont"}, "wa_id": "33612345678"}],
                            "messages": [{
                                "from": "33612345678",
                                "id": "wamid.HBgLMzM2MTIzNDU2NzgVAgASGBQ",
                                "timestamp": "1760000000",
                                "type": "text",
                                "text": {"body": "Oui, rappelez-moi"},
                            }],
                        },
                    }],
                }],
            }
        }
    }


class WebhookAck(BaseModel):
    success: bool = True
    statuses_processed: int = 0
    messages_processed: int = 0
    cases_put_on_hold: int = 0
