"""
Tests for the WhatsApp webhook endpoints.
"""
from fastapi.testclient import TestClient


class TestVerification:

    def test_echoes_challenge(self, client: TestClient):
        response = client.get(
            "/api/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
        )
        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_wrong_token(self, client: TestClient):
        response = client.get(
            "/api/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1158201444"},
        )
        assert response.status_code == 403


class TestDelivery:

    def test_reply_puts_case_on_hold(self, client: TestClient, make_case, case_store):
        make_case("case-1", status="Reminder2_sent")

        response = client.post("/api/webhook", json={
            "object": "whatsapp_business_account",
            "entry": [{
                "id": "1",
                "changes": [{
                    "field": "messages",
                    "value": {
                        "messaging_product": "whatsapp",
                        "contacts": [{"profile": {"name": "Jean Dupont"}, "wa_id": "33612345678"}],
                        "messages": [{
                            "from": "33612345678",
                            "id": "wamid.in1",
                            "timestamp": "1772445600",
                            "type": "text",
                            "text": {"body": "Je préfère être appelé"},
                        }],
                    },
                }],
            }],
        })

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "statuses_processed": 0,
            "messages_processed": 1,
            "cases_put_on_hold": 1,
        }
        assert case_store.peek("case-1").status == "Onhold"

    def test_other_objects_are_rejected(self, client: TestClient):
        response = client.post("/api/webhook", json={"object": "page", "entry": []})
        assert response.status_code == 400

    def test_malformed_payload(self, client: TestClient):
        response = client.post("/api/webhook", json={"entry": []})
        assert response.status_code == 422
