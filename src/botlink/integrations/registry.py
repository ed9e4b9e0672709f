"""Integration registry - binds an integration id to its provider implementation.

The provider set is closed: PROVIDERS maps every Provider member to exactly
one implementation of PlatformProvider. Adding a platform means adding an
enum member and an implementation module; a member without an
implementation fails at import.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from .http import ProviderResponseError, TransportError
from .models import (
    CredentialValidation,
    Integration,
    IntegrationStatus,
    NormalizedInboundEvent,
    Provider,
    SendError,
    SendResult,
    TemplateRef,
    TextOptions,
    WebhookInfo,
    WebhookVerificationResult,
)
from .telegram import TelegramProvider
from .whatsapp import WhatsAppProvider


class PlatformProvider(Protocol):
    """Capability set every provider variant implements."""

    provider: Provider
    supports_templates: bool

    def prepare_credentials(self, bag: Mapping[str, Any]) -> dict[str, str]: ...

    def fetch_identity(self, bag: Mapping[str, Any]) -> CredentialValidation: ...

    def display_name(self, identity: str) -> str: ...

    def on_connect(self, bag: Mapping[str, Any], webhook_url: str | None) -> None: ...

    def on_disconnect(self, bag: Mapping[str, Any]) -> None: ...

    def webhook_info(self, bag: Mapping[str, Any]) -> WebhookInfo | None: ...

    def verify_handshake(
        self,
        bag: Mapping[str, Any],
        *,
        mode: str | None,
        token: str | None,
        challenge: str | None,
    ) -> WebhookVerificationResult: ...

    def verify_delivery(
        self, bag: Mapping[str, Any], body: bytes, headers: Mapping[str, str]
    ) -> bool: ...

    def normalize(
        self, payload: Any, *, integration_id: str, received_at: datetime
    ) -> list[NormalizedInboundEvent]: ...

    def send_text(
        self,
        bag: Mapping[str, Any],
        recipient_id: str,
        text: str,
        options: TextOptions | None = None,
    ) -> SendResult: ...

    def send_template(
        self, bag: Mapping[str, Any], recipient_id: str, template: TemplateRef
    ) -> SendResult: ...

    def mark_delivered(self, bag: Mapping[str, Any], message_id: str) -> None: ...

    def describe_error(self, exc: ProviderResponseError) -> str: ...

    def translate_error(self, exc: TransportError | ProviderResponseError) -> SendError: ...


PROVIDERS: dict[Provider, PlatformProvider] = {
    Provider.WHATSAPP: WhatsAppProvider(),
    Provider.TELEGRAM: TelegramProvider(),
}

_missing = set(Provider) - set(PROVIDERS)
if _missing:
    raise RuntimeError(f"No provider implementation for: {sorted(p.value for p in _missing)}")


def get_provider(provider: Provider | str) -> PlatformProvider:
    """Return the implementation for a provider tag.

    Raises:
        ValueError: If the tag is not a known provider.
    """
    return PROVIDERS[Provider(provider)]


class IntegrationStore(Protocol):
    """Storage collaborator. Returns integrations with decrypted credentials."""

    def get(self, integration_id: str) -> Integration | None: ...

    def create(self, integration: Integration) -> Integration: ...

    def update_status(self, integration_id: str, status: IntegrationStatus) -> None: ...

    def delete(self, integration_id: str) -> bool: ...

    def list_for_owner(self, owner_id: str) -> list[Integration]: ...


class IntegrationResolutionError(Exception):
    """Base for "this integration cannot be used" failures.

    Distinct from SendError: the provider was never contacted.
    """

    def __init__(self, integration_id: str, message: str) -> None:
        super().__init__(message)
        self.integration_id = integration_id


class IntegrationNotFoundError(IntegrationResolutionError):
    """No integration with this id."""

    def __init__(self, integration_id: str) -> None:
        super().__init__(integration_id, "integration not found")


class IntegrationUnavailableError(IntegrationResolutionError):
    """Integration exists but is not connected (disconnected, error, pending)."""

    def __init__(self, integration_id: str, status: IntegrationStatus) -> None:
        super().__init__(integration_id, f"integration is {status.value}")
        self.status = status


@dataclass(frozen=True)
class ResolvedIntegration:
    integration: Integration
    provider: PlatformProvider

    @property
    def credentials(self) -> dict[str, str]:
        return self.integration.credentials


class IntegrationRegistry:
    """Resolves integration ids to (integration, provider implementation)."""

    def __init__(self, store: IntegrationStore) -> None:
        self._store = store

    @property
    def store(self) -> IntegrationStore:
        return self._store

    def resolve(self, integration_id: str, *, require_connected: bool = True) -> ResolvedIntegration:
        """Resolve an integration for use by the verifier, normalizer or dispatcher.

        Args:
            integration_id: Integration identifier.
            require_connected: Reject integrations whose status is not
                "connected". Webhook handshakes pass False so a pending
                integration can still complete provider setup.

        Raises:
            IntegrationNotFoundError: Unknown id.
            IntegrationUnavailableError: Not connected (when required), or
                disconnected (always).
        """
        integration = self._store.get(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)

        if integration.status == IntegrationStatus.DISCONNECTED or (
            require_connected and integration.status != IntegrationStatus.CONNECTED
        ):
            raise IntegrationUnavailableError(integration_id, integration.status)

        return ResolvedIntegration(
            integration=integration,
            provider=get_provider(integration.provider),
        )
