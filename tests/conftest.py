"""Shared pytest fixtures for botlink tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import InMemoryIntegrationStore, make_integration  # noqa: E402

from botlink.integrations.models import Provider  # noqa: E402
from botlink.integrations.registry import IntegrationRegistry  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_provider_env(monkeypatch):
    """Provider base URLs must never point at a real API from a test."""
    monkeypatch.setenv("WHATSAPP_GRAPH_BASE_URL", "https://graph.test")
    monkeypatch.setenv("WHATSAPP_GRAPH_API_VERSION", "v18.0")
    monkeypatch.setenv("TELEGRAM_API_BASE_URL", "https://telegram.test")


@pytest.fixture
def store():
    """In-memory store with one WhatsApp (int-1) and one Telegram (tg-1) integration."""
    return InMemoryIntegrationStore(
        [
            make_integration("int-1", Provider.WHATSAPP),
            make_integration("tg-1", Provider.TELEGRAM),
        ]
    )


@pytest.fixture
def registry(store):
    return IntegrationRegistry(store)
