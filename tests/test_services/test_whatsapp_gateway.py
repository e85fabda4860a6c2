"""
Tests for the WhatsApp Cloud API gateway.
"""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.exceptions import (
    ExternalServiceRateLimitError,
    GatewayError,
    GatewayTimeoutError,
    ServiceUnavailableError,
)
from app.models.conversation import ConversationMessage, MessageDirection, StatusEvent
from app.services.whatsapp_gateway import WhatsAppCloudGateway, build_template_components
from app.utils.message_templates import TemplateVariables

REMINDER_VARIABLES = TemplateVariables(
    body_parameters=["Centre Lyon Est - AUTOSUR", "01/04/2026"],
    url_button="https://rdv.example.com/lyon-est",
    call_button="+33478000000",
)


class Recorder:
    """MockTransport handler returning queued responses and keeping requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _gateway(conversation_store, handler, token="test-token", phone_id="123456789", breaker=None):
    return WhatsAppCloudGateway(
        api_token=token,
        phone_id=phone_id,
        conversations=conversation_store,
        circuit_breaker=breaker,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestTemplateComponents:

    def test_full_reminder(self):
        components = build_template_components(REMINDER_VARIABLES)

        assert components[0] == {
            "type": "body",
            "parameters": [
                {"type": "text", "text": "Centre Lyon Est - AUTOSUR"},
                {"type": "text", "text": "01/04/2026"},
            ],
        }
        assert components[1]["sub_type"] == "url"
        assert components[1]["index"] == 0
        assert components[2]["sub_type"] == "VOICE_CALL"
        assert components[2]["index"] == 1
        assert components[2]["parameters"] == [{"type": "text", "text": "33478000000"}]

    def test_empty_values_become_placeholder(self):
        components = build_template_components(TemplateVariables(body_parameters=["", "01/04/2026"]))
        assert components[0]["parameters"][0]["text"] == "N/A"

    def test_without_variables(self):
        assert build_template_components(TemplateVariables()) == []

    def test_call_button_alone_takes_first_index(self):
        components = build_template_components(TemplateVariables(call_button="33478000000"))
        assert components == [{
            "type": "button",
            "sub_type": "VOICE_CALL",
            "index": 0,
            "parameters": [{"type": "text", "text": "33478000000"}],
        }]


class TestSendTemplate:

    @pytest.mark.asyncio
    async def test_success(self, conversation_store):
        recorder = Recorder(httpx.Response(200, json={"messages": [{"id": "wamid.ABC"}]}))
        gateway = _gateway(conversation_store, recorder)

        message_id = await gateway.send_template("+33612345678", "rappel_visite_technique_vf", "en", REMINDER_VARIABLES)

        assert message_id == "wamid.ABC"
        request = recorder.requests[0]
        assert str(request.url) == "https://graph.facebook.com/v17.0/123456789/messages"
        assert request.headers["Authorization"] == "Bearer test-token"
        body = json.loads(request.content)
        assert body["to"] == "33612345678"
        assert body["type"] == "template"
        assert body["template"]["name"] == "rappel_visite_technique_vf"
        assert body["template"]["language"] == {"code": "en"}
        assert len(body["template"]["components"]) == 3

    @pytest.mark.asyncio
    async def test_missing_credentials(self, conversation_store):
        recorder = Recorder(httpx.Response(200, json={"messages": [{"id": "wamid.ABC"}]}))
        gateway = _gateway(conversation_store, recorder, token=None)

        with pytest.raises(GatewayError, match="Missing WhatsApp credentials"):
            await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables())
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_api_error_message(self, conversation_store):
        recorder = Recorder(httpx.Response(400, json={"error": {"message": "Template name does not exist"}}))
        gateway = _gateway(conversation_store, recorder)

        with pytest.raises(GatewayError) as exc_info:
            await gateway.send_template("+33612345678", "unknown", "en", TemplateVariables())

        assert exc_info.value.status_code == 400
        assert "Template name does not exist" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rate_limited(self, conversation_store):
        recorder = Recorder(httpx.Response(429, headers={"Retry-After": "30"}, json={}))
        gateway = _gateway(conversation_store, recorder)

        with pytest.raises(ExternalServiceRateLimitError) as exc_info:
            await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables())
        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_timeout(self, conversation_store):
        recorder = Recorder(httpx.ReadTimeout("timed out"))
        gateway = _gateway(conversation_store, recorder)

        with pytest.raises(GatewayTimeoutError):
            await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables())

    @pytest.mark.asyncio
    async def test_response_without_message_id(self, conversation_store):
        recorder = Recorder(httpx.Response(200, json={"messages": []}))
        gateway = _gateway(conversation_store, recorder)

        with pytest.raises(GatewayError):
            await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables())

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, conversation_store):
        recorder = Recorder(httpx.Response(500, json={"error": {"message": "Internal"}}))
        breaker = CircuitBreaker("WhatsApp", CircuitBreakerConfig(failure_threshold=2, timeout=60))
        gateway = _gateway(conversation_store, recorder, breaker=breaker)

        for _ in range(2):
            with pytest.raises(GatewayError):
                await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables())

        with pytest.raises(ServiceUnavailableError):
            await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables())

        assert len(recorder.requests) == 2
        assert gateway.get_circuit_breaker_status()["is_available"] is False

    @pytest.mark.asyncio
    async def test_rejected_messages_do_not_open_circuit(self, conversation_store):
        recorder = Recorder(
            *[httpx.Response(400, json={"error": {"message": "Invalid parameter"}})] * 3,
            httpx.Response(200, json={"messages": [{"id": "wamid.OK"}]}),
        )
        breaker = CircuitBreaker("WhatsApp", CircuitBreakerConfig(failure_threshold=2, timeout=60))
        gateway = _gateway(conversation_store, recorder, breaker=breaker)

        for _ in range(3):
            with pytest.raises(GatewayError) as exc_info:
                await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables())
            assert exc_info.value.status_code == 400

        assert await gateway.send_template("+33612345678", "assistance_rdv", "fr", TemplateVariables()) == "wamid.OK"
        assert breaker.failure_count == 0
        assert len(recorder.requests) == 4


class TestDeliveryQueries:

    @pytest.mark.asyncio
    async def test_read_receipt_follows_status_callbacks(self, conversation_store):
        gateway = _gateway(conversation_store, Recorder(httpx.Response(200, json={})))
        sent_at = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        conversation = await conversation_store.get_or_create_conversation("+33612345678", subject_id="client-1")
        stored = await conversation_store.add_message(ConversationMessage(
            conversation_id=conversation.id,
            wa_message_id="wamid.1",
            direction=MessageDirection.OUTBOUND,
            created_at=sent_at,
        ))

        latest = await gateway.latest_outbound_template("client-1")
        assert latest.id == stored.id
        assert not (await gateway.get_read_receipt(stored.id)).is_read

        read_at = sent_at + timedelta(minutes=10)
        await conversation_store.apply_status_event(StatusEvent(wa_message_id="wamid.1", status="read", timestamp=read_at))

        receipt = await gateway.get_read_receipt(stored.id)
        assert receipt.is_read
        assert receipt.read_at == read_at

    @pytest.mark.asyncio
    async def test_unknown_subject(self, conversation_store):
        gateway = _gateway(conversation_store, Recorder(httpx.Response(200, json={})))
        assert await gateway.latest_outbound_template("nobody") is None
