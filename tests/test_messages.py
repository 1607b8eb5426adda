"""
Tests for the /messages endpoints.

Tests cover:
- Creating messages (success, validation errors, delivery failures)
- Listing messages newest-first, scoped to the caller
- Polling for status updates
- Authentication on every messages route
"""

import pytest

from conftest import NOT_CONFIGURED, auth_headers, register
from smschat.gateway import DeliveryResult
from smschat.storage import SessionLocal
from smschat.models import Message


def send(client, headers, phone_number="+18777804236", message_body="Hello from the chat"):
    return client.post(
        "/messages",
        json={"message": {"phone_number": phone_number, "message_body": message_body}},
        headers=headers,
    )


def stored_messages():
    with SessionLocal() as db:
        return db.query(Message).order_by(Message.id).all()


class TestCreateMessage:

    def test_success(self, client, alice_headers, fake_gateway):
        fake_gateway.send_result = DeliveryResult.success("SM1", "queued")

        response = send(client, alice_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["phone_number"] == "+18777804236"
        assert data["message_body"] == "Hello from the chat"
        assert data["direction"] == "outbound"
        assert data["status"] == "sending"
        assert data["provider_message_id"] == "SM1"
        assert set(data) == {
            "id", "phone_number", "message_body", "direction", "status",
            "provider_message_id", "created_at", "updated_at",
        }

        [message] = stored_messages()
        assert message.owner == "alice"
        assert message.status == "sending"
        assert message.provider_message_id == "SM1"

    def test_provider_unreachable(self, client, alice_headers, fake_gateway):
        fake_gateway.send_result = DeliveryResult.failure("The SMS provider could not be reached")

        response = send(client, alice_headers)

        assert response.status_code == 422
        data = response.json()
        assert data["errors"] == ["SMS failed: The SMS provider could not be reached"]
        assert data["message"]["status"] == "failed"
        assert data["message"]["provider_message_id"] is None

        [message] = stored_messages()
        assert message.status == "failed"
        assert message.provider_message_id is None

    def test_provider_not_configured(self, client, alice_headers, fake_gateway, provider_config):
        provider_config.value = NOT_CONFIGURED

        response = send(client, alice_headers)

        assert response.status_code == 422
        assert response.json()["errors"] == ["SMS failed: SMS provider is not configured"]
        assert fake_gateway.sent == []
        [message] = stored_messages()
        assert message.status == "failed"

    def test_body_of_250_characters(self, client, alice_headers):
        response = send(client, alice_headers, message_body="x" * 250)
        assert response.status_code == 201

    def test_body_of_251_characters(self, client, alice_headers, fake_gateway):
        response = send(client, alice_headers, message_body="x" * 251)

        assert response.status_code == 422
        errors = response.json()["errors"]
        assert errors == ["message_body is too long (maximum is 250 characters)"]
        assert stored_messages() == []
        assert fake_gateway.sent == []

    @pytest.mark.parametrize("phone_number", ["abc", "", "0123456789", "+1٨٧٧٧٨٠"])
    def test_invalid_phone_number(self, client, alice_headers, phone_number):
        response = send(client, alice_headers, phone_number=phone_number)

        assert response.status_code == 422
        assert any(error.startswith("phone_number") for error in response.json()["errors"])
        assert stored_messages() == []

    def test_accepts_number_without_plus(self, client, alice_headers):
        response = send(client, alice_headers, phone_number="18777804236")
        assert response.status_code == 201

    def test_missing_fields(self, client, alice_headers):
        response = client.post("/messages", json={"message": {}}, headers=alice_headers)

        assert response.status_code == 422
        assert sorted(response.json()["errors"]) == [
            "message_body can't be blank",
            "phone_number can't be blank",
        ]

    def test_missing_envelope(self, client, alice_headers):
        response = client.post(
            "/messages",
            json={"phone_number": "+18777804236", "message_body": "Hi"},
            headers=alice_headers,
        )

        assert response.status_code == 422
        assert response.json()["errors"] == ["message can't be blank"]

    def test_requires_token(self, client, fake_gateway):
        response = send(client, {})

        assert response.status_code == 401
        assert response.json() == {"error": "No token provided"}
        assert stored_messages() == []
        assert fake_gateway.sent == []


class TestListMessages:

    def test_empty(self, client, alice_headers):
        response = client.get("/messages", headers=alice_headers)

        assert response.status_code == 200
        assert response.json() == []

    def test_newest_first(self, client, alice_headers, fake_gateway):
        for index in range(3):
            fake_gateway.send_result = DeliveryResult.success(f"SM{index}", "queued")
            assert send(client, alice_headers, message_body=f"message {index}").status_code == 201

        response = client.get("/messages", headers=alice_headers)

        bodies = [m["message_body"] for m in response.json()]
        assert bodies == ["message 2", "message 1", "message 0"]

    def test_ownership_isolation(self, client, alice_headers, bob_headers, fake_gateway):
        fake_gateway.send_result = DeliveryResult.success("SMalice", "queued")
        send(client, alice_headers, message_body="from alice")

        alice = client.get("/messages", headers=alice_headers).json()
        bob = client.get("/messages", headers=bob_headers).json()

        assert [m["message_body"] for m in alice] == ["from alice"]
        assert bob == []

    def test_invalid_token(self, client):
        response = client.get("/messages", headers=auth_headers("not-a-token"))

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}


class TestCheckStatusUpdates:

    def test_no_eligible_messages(self, client, alice_headers, fake_gateway):
        fake_gateway.send_result = DeliveryResult.failure("The SMS provider rejected the message")
        send(client, alice_headers)
        before = client.get("/messages", headers=alice_headers).json()

        response = client.get("/messages/check_status_updates", headers=alice_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["updates_count"] == 0
        assert data["messages"] == before
        assert fake_gateway.fetched == []

    def test_applies_provider_status(self, client, alice_headers, fake_gateway):
        fake_gateway.send_result = DeliveryResult.success("SM1", "queued")
        send(client, alice_headers)
        fake_gateway.statuses["SM1"] = "delivered"

        data = client.get("/messages/check_status_updates", headers=alice_headers).json()

        assert data["updates_count"] == 1
        assert [m["status"] for m in data["messages"]] == ["delivered"]

        # Terminal now, so a second poll has nothing to do
        data = client.get("/messages/check_status_updates", headers=alice_headers).json()
        assert data["updates_count"] == 0
        assert fake_gateway.fetched == ["SM1"]

    def test_only_polls_own_messages(self, client, alice_headers, bob_headers, fake_gateway):
        fake_gateway.send_result = DeliveryResult.success("SMalice", "sent")
        send(client, alice_headers)
        fake_gateway.statuses["SMalice"] = "delivered"

        data = client.get("/messages/check_status_updates", headers=bob_headers).json()

        assert data == {"messages": [], "updates_count": 0}
        assert fake_gateway.fetched == []

    def test_requires_token(self, client):
        response = client.get("/messages/check_status_updates")
        assert response.status_code == 401


def test_other_users_token_is_scoped(client, fake_gateway):
    carol = auth_headers(register(client, "carol"))
    dave = auth_headers(register(client, "dave"))
    fake_gateway.send_result = DeliveryResult.success("SMc", "queued")
    send(client, carol)

    assert len(client.get("/messages", headers=carol).json()) == 1
    assert client.get("/messages", headers=dave).json() == []
