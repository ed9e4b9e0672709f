"""Shared test helpers for botlink tests.

This module contains helpers that can be imported by both conftest.py and
individual test files. These are NOT fixtures - they are regular functions
and classes.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

from botlink.integrations.models import Integration, IntegrationStatus, Provider

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

WHATSAPP_CREDENTIALS = {
    "phone_number_id": "109876543210",
    "access_token": "EAAtesttoken0123456789abcdef",
    "verify_token": "verify-me-123",
    "app_secret": "test-meta-secret",
}

TELEGRAM_CREDENTIALS = {
    "bot_token": "123456789:AAHtesttoken0123456789abcdefghijk",
    "webhook_secret": "tg-secret-abc",
}


class InMemoryIntegrationStore:
    """IntegrationStore fake keeping integrations in a dict."""

    def __init__(self, integrations: list[Integration] | None = None):
        self.integrations: dict[str, Integration] = {}
        for integration in integrations or []:
            self.integrations[integration.id] = integration
        self.deleted: list[str] = []

    def get(self, integration_id: str) -> Integration | None:
        return self.integrations.get(integration_id)

    def create(self, integration: Integration) -> Integration:
        self.integrations[integration.id] = integration
        return integration

    def update_status(self, integration_id: str, status: IntegrationStatus) -> None:
        self.integrations[integration_id] = self.integrations[integration_id].with_status(status)

    def delete(self, integration_id: str) -> bool:
        if integration_id not in self.integrations:
            return False
        del self.integrations[integration_id]
        self.deleted.append(integration_id)
        return True

    def list_for_owner(self, owner_id: str) -> list[Integration]:
        return [i for i in self.integrations.values() if i.owner_id == owner_id]


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.calls]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def has_extra_field(self, key: str) -> bool:
        """Check if any call has the given key in extra_fields."""
        for _, _, kwargs in self.calls:
            extra_fields = kwargs.get("extra", {}).get("extra_fields", {})
            if key in extra_fields:
                return True
        return False


def make_integration(
    integration_id: str = "int-1",
    provider: Provider = Provider.WHATSAPP,
    status: IntegrationStatus = IntegrationStatus.CONNECTED,
    credentials: dict[str, str] | None = None,
    owner_id: str | None = "owner-1",
) -> Integration:
    if credentials is None:
        credentials = dict(
            WHATSAPP_CREDENTIALS if provider == Provider.WHATSAPP else TELEGRAM_CREDENTIALS
        )
    return Integration(
        id=integration_id,
        provider=provider,
        status=status,
        credentials=credentials,
        created_at=FIXED_NOW,
        owner_id=owner_id,
    )


def provider_error(status_code: int, body: dict[str, Any]):
    """Build the ProviderResponseError a failed request_json() raises."""
    from botlink.integrations.http import ProviderResponseError

    return ProviderResponseError(status_code, body, json.dumps(body))


def http_response(status_code: int = 200, body: Any = None) -> MagicMock:
    """Mock requests.Response with a JSON body (None means non-JSON)."""
    resp = MagicMock()
    resp.status_code = status_code
    if body is None:
        resp.json.side_effect = ValueError("no json")
        resp.text = "<html>"
    else:
        resp.json.return_value = body
        resp.text = json.dumps(body)
    return resp


def meta_signature(payload_bytes: bytes, secret: str = WHATSAPP_CREDENTIALS["app_secret"]) -> str:
    sig = hmac.new(secret.encode(), payload_bytes, hashlib.sha256).hexdigest()
    return f"sha256={sig}"


# ── Payload builders ─────────────────────────────────────


def wa_message(
    message_id: str = "wamid.MSG1",
    sender: str | None = "15550001111",
    text: str = "hello",
    timestamp: str = "1704067200",
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "id": message_id,
        "timestamp": timestamp,
        "type": "text",
        "text": {"body": text},
    }
    if sender is not None:
        message["from"] = sender
    return message


def wa_status(
    message_id: str = "wamid.OUT1",
    status: str = "delivered",
    recipient: str = "15550001111",
    timestamp: str = "1704067260",
) -> dict[str, Any]:
    return {
        "id": message_id,
        "status": status,
        "timestamp": timestamp,
        "recipient_id": recipient,
    }


def wa_payload(
    messages: list[dict] | None = None,
    statuses: list[dict] | None = None,
    contacts: list[dict] | None = None,
) -> dict[str, Any]:
    value: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "metadata": {
            "display_phone_number": "15550009999",
            "phone_number_id": WHATSAPP_CREDENTIALS["phone_number_id"],
        },
    }
    if contacts is not None:
        value["contacts"] = contacts
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA_ID", "changes": [{"value": value, "field": "messages"}]}],
    }


def tg_update(
    update_id: int = 1001,
    message_id: int = 55,
    chat_id: int = 777,
    user_id: int | None = 777,
    text: str = "hi bot",
    date: int = 1704067200,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "message_id": message_id,
        "date": date,
        "chat": {"id": chat_id, "type": "private"},
        "text": text,
    }
    if user_id is not None:
        message["from"] = {"id": user_id, "is_bot": False, "first_name": "Ada", "last_name": "L"}
    return {"update_id": update_id, "message": message}
