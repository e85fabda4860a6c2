"""
WhatsApp Cloud API webhook: verification handshake and event delivery.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from app.core.dependencies import WorkflowContainer, get_container, get_inbound_service
from app.core.exceptions import WebhookVerificationError
from app.core.logging import get_logger
from app.schemas.webhook import WebhookAck, WebhookPayload
from app.services.inbound_service import WEBHOOK_OBJECT, InboundService

router = APIRouter()
logger = get_logger(__name__)


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    container: WorkflowContainer = Depends(get_container),
):
    """Answer Meta's subscription handshake by echoing the challenge."""
    expected = container.settings.whatsapp_verify_token
    if mode == "subscribe" and expected and token == expected:
        logger.info("Webhook verified")
        return challenge or ""

    logger.warning("Webhook verification failed", mode=mode)
    raise WebhookVerificationError()


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    payload: WebhookPayload,
    inbound: InboundService = Depends(get_inbound_service),
):
    """
    Process incoming messages and delivery status updates.

    Always acknowledges with 200 once the payload is understood, so Meta
    does not redeliver events that were partly applied.
    """
    if payload.object != WEBHOOK_OBJECT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook object",
        )

    try:
        ack = await inbound.handle_payload(payload)
    except Exception as e:
        logger.error("Webhook processing failed", error=str(e), exc_info=True)
        return WebhookAck(success=False)

    logger.info(
        "Webhook processed",
        messages=ack.messages_processed,
        statuses=ack.statuses_processed,
        cases_put_on_hold=ack.cases_put_on_hold,
    )
    return ack
