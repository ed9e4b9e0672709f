"""Tests for the setup API routes."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import make_integration

from botlink.api.factory import create_app
from botlink.integrations.models import CredentialValidation, IntegrationStatus, Provider

MODULE = "botlink.api.routes.integrations"
SETUP = "botlink.services.integration_setup"


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://bots.example")
    with patch(f"{MODULE}._get_store", return_value=store):
        yield TestClient(create_app(role="public"))


class TestWhatsAppSetup:
    def test_success_returns_webhook_details(self, client, store):
        with patch(
            f"{SETUP}.validate_credentials",
            return_value=CredentialValidation(valid=True, identity="+1 555"),
        ):
            response = client.post(
                "/integrations/whatsapp/setup",
                json={"owner_id": "owner-2", "phone_number_id": "1", "access_token": "EAAx"},
            )

        assert response.status_code == 201
        data = response.json()
        assert data["provider"] == "whatsapp"
        assert data["status"] == "connected"
        assert data["name"] == "WhatsApp: +1 555"
        assert data["webhook_url"] == f"https://bots.example/webhooks/whatsapp/{data['id']}"
        assert data["verify_token"]
        assert "access_token" not in response.text
        assert store.get(data["id"]).owner_id == "owner-2"

    def test_validation_error_returned_verbatim(self, client):
        with patch(
            f"{SETUP}.validate_credentials",
            return_value=CredentialValidation(valid=False, error="Invalid OAuth access token."),
        ):
            response = client.post(
                "/integrations/whatsapp/setup",
                json={"phone_number_id": "1", "access_token": "bad"},
            )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid OAuth access token."

    def test_missing_fields_is_422(self, client):
        response = client.post("/integrations/whatsapp/setup", json={"phone_number_id": "1"})
        assert response.status_code == 422


class TestTelegramSetup:
    def test_success_registers_webhook(self, client):
        with patch(
            f"{SETUP}.validate_credentials",
            return_value=CredentialValidation(valid=True, identity="@acme_bot"),
        ), patch(
            "botlink.integrations.telegram.request_json",
            return_value={"ok": True, "result": True},
        ) as mock_request:
            response = client.post(
                "/integrations/telegram/setup",
                json={"owner_id": "owner-1", "bot_token": "1:abc"},
            )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "@acme_bot"
        assert "webhook_secret" not in data
        assert mock_request.call_args.kwargs["json_body"]["url"].startswith(
            "https://bots.example/webhooks/telegram/"
        )


class TestManagement:
    def test_list_by_owner(self, client, store):
        store.create(make_integration("other", owner_id="owner-9"))

        response = client.get("/integrations", params={"owner_id": "owner-1"})

        assert response.status_code == 200
        ids = sorted(i["id"] for i in response.json()["integrations"])
        assert ids == ["int-1", "tg-1"]
        assert "credentials" not in response.text

    def test_revalidate(self, client, store):
        with patch(
            f"{SETUP}.validate_credentials",
            return_value=CredentialValidation(valid=False, error="expired"),
        ):
            response = client.post("/integrations/int-1/revalidate")

        assert response.status_code == 200
        assert response.json()["status"] == "error"
        assert response.json()["webhook"] is None
        assert store.get("int-1").status == IntegrationStatus.ERROR

    def test_revalidate_telegram_includes_webhook(self, client):
        info = {"url": "https://bots.example/webhooks/telegram/tg-1", "pending_update_count": 0}
        with patch(
            f"{SETUP}.validate_credentials",
            return_value=CredentialValidation(valid=True, identity="@acme_bot"),
        ), patch(
            "botlink.integrations.telegram.request_json",
            return_value={"ok": True, "result": info},
        ):
            response = client.post("/integrations/tg-1/revalidate")

        webhook = response.json()["webhook"]
        assert webhook["url"] == info["url"]
        assert webhook["healthy"] is True
        assert webhook["last_error_at"] is None

    def test_revalidate_unknown(self, client):
        assert client.post("/integrations/missing/revalidate").status_code == 404

    def test_disconnect(self, client, store):
        response = client.delete("/integrations/int-1")
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert store.get("int-1") is None

    def test_disconnect_unknown(self, client):
        response = client.delete("/integrations/missing")
        assert response.status_code == 404
        assert response.json()["detail"] == "integration_not_found"

    def test_disconnect_telegram_removes_webhook(self, client, store):
        store.create(make_integration("tg-2", Provider.TELEGRAM))
        with patch(
            "botlink.integrations.telegram.request_json",
            return_value={"ok": True, "result": True},
        ) as mock_request:
            client.delete("/integrations/tg-2")
        assert mock_request.call_args[0][1].endswith("/deleteWebhook")
