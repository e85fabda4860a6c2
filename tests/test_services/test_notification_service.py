"""
Tests for notification sinks.
"""
import json
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.services.notification_service import (
    NotificationService,
    NotificationSeverity,
    SupabaseNotificationSink,
)


def _service(handler, breaker=None):
    return NotificationService(
        base_url="http://notifications.test/",
        circuit_breaker=breaker,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestNotificationService:

    @pytest.mark.asyncio
    async def test_posts_notification(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        delivered = await _service(handler).notify(
            "Appel requis", "Le client nécessite un appel", NotificationSeverity.ACTION_REQUIRED, "/clients/7"
        )

        assert delivered is True
        assert str(requests[0].url) == "http://notifications.test/notifications/send"
        body = json.loads(requests[0].content)
        assert body["type"] == "action_required"
        assert body["subject"] == "Appel requis"
        assert body["link"] == "/clients/7"

    @pytest.mark.asyncio
    async def test_rejected_payload_returns_false(self):
        delivered = await _service(lambda request: httpx.Response(422)).notify(
            "Titre", "Corps", NotificationSeverity.INFO
        )
        assert delivered is False

    @pytest.mark.asyncio
    async def test_server_errors_open_the_circuit(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        breaker = CircuitBreaker("Notification Service", CircuitBreakerConfig(failure_threshold=2))
        service = _service(handler, breaker)

        results = [await service.notify("Titre", "Corps", NotificationSeverity.INFO) for _ in range(3)]

        assert results == [False, False, False]
        assert len(calls) == 2
        assert service.get_circuit_breaker_status()["state"] == "open"

    @pytest.mark.asyncio
    async def test_connection_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        assert await _service(handler).notify("Titre", "Corps", NotificationSeverity.WARNING) is False


@pytest.fixture
def supabase_client():
    client = MagicMock()
    builder = MagicMock()
    for method in ("select", "in_", "insert"):
        getattr(builder, method).return_value = builder
    client.table.return_value = builder
    return client, builder


class TestSupabaseNotificationSink:

    @pytest.mark.asyncio
    async def test_one_row_per_admin(self, supabase_client):
        client, builder = supabase_client
        builder.execute.side_effect = [MagicMock(data=[{"id": "u1"}, {"id": "u2"}]), MagicMock(data=[])]

        delivered = await SupabaseNotificationSink(client).notify(
            "Rapport quotidien des rappels", "2 WhatsApp envoyés", NotificationSeverity.INFO
        )

        assert delivered is True
        rows = builder.insert.call_args.args[0]
        assert [r["user_id"] for r in rows] == ["u1", "u2"]
        assert rows[0]["type"] == "info"
        builder.in_.assert_called_once_with("role", ["admin", "superadmin"])

    @pytest.mark.asyncio
    async def test_no_admins(self, supabase_client):
        client, builder = supabase_client
        builder.execute.return_value = MagicMock(data=[])

        assert await SupabaseNotificationSink(client).notify("T", "B", NotificationSeverity.INFO) is False
        builder.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_database_error_returns_false(self, supabase_client):
        client, builder = supabase_client
        builder.execute.side_effect = APIError({"message": "permission denied", "code": "42501"})

        assert await SupabaseNotificationSink(client).notify("T", "B", NotificationSeverity.INFO) is False
