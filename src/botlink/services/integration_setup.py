"""Integration lifecycle - setup, revalidation and disconnect.

Rules:
- Credentials are validated before anything is persisted.
- Generated secrets (verify_token / webhook_secret) are filled in at setup.
- A Telegram webhook is registered at setup when a base URL is known and
  removed (best-effort) at disconnect.
- A webhook registered for an integration that then fails to persist is
  removed again (best-effort).
- Disconnect deletes the integration; providers stop delivering to it.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from botlink.infra.time import utc_now
from botlink.integrations.http import ProviderResponseError, TransportError
from botlink.integrations.models import (
    Integration,
    IntegrationStatus,
    InvalidCredentialsError,
    Provider,
    WebhookInfo,
)
from botlink.integrations.registry import (
    IntegrationNotFoundError,
    IntegrationStore,
    PlatformProvider,
    get_provider,
)
from botlink.integrations.validator import validate_credentials
from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context

logger = get_logger(__name__)


# ── Exceptions ───────────────────────────────────────────


class SetupError(Exception):
    """Setup rejected. The message is safe to show to the user verbatim."""

    pass


@dataclass(frozen=True)
class Revalidation:
    integration: Integration
    webhook: WebhookInfo | None = None


# ── Service functions ────────────────────────────────────


def webhook_url_for(base_url: str, integration: Integration) -> str:
    return f"{base_url.rstrip('/')}/webhooks/{integration.provider.value}/{integration.id}"


def _remove_webhook(impl: PlatformProvider, integration: Integration) -> bool:
    """Best-effort on_disconnect. Returns False (and logs) when the provider call fails."""
    try:
        impl.on_disconnect(integration.credentials)
    except (TransportError, ProviderResponseError, InvalidCredentialsError) as e:
        logger.warning(
            "webhook removal failed",
            extra={
                "extra_fields": safe_log_context(
                    integration_id=integration.id,
                    provider=integration.provider.value,
                    error_type=type(e).__name__,
                )
            },
        )
        return False
    return True


def setup_integration(
    provider: Provider | str,
    credentials: Mapping[str, Any],
    owner_id: str | None,
    store: IntegrationStore,
    webhook_base_url: str | None = None,
) -> Integration:
    """Validate credentials and persist a connected integration.

    Args:
        provider: Provider tag.
        credentials: Raw credentials from the setup form. NEVER logged.
        owner_id: Tenant that owns the integration.
        store: Integration store.
        webhook_base_url: Public base URL of this service. When set, providers
            that register webhooks programmatically (Telegram) do so now.

    Returns:
        The persisted Integration.

    Raises:
        SetupError: Validation or webhook registration failed. Nothing is persisted.
    """
    validation = validate_credentials(provider, credentials)
    if not validation.valid:
        raise SetupError(validation.error or "Invalid credentials")

    impl = get_provider(provider)
    integration = Integration(
        id=str(uuid.uuid4()),
        provider=impl.provider,
        status=IntegrationStatus.CONNECTED,
        credentials=impl.prepare_credentials(credentials),
        created_at=utc_now(),
        owner_id=owner_id,
        name=impl.display_name(validation.identity or ""),
    )

    webhook_url = webhook_url_for(webhook_base_url, integration) if webhook_base_url else None
    try:
        impl.on_connect(integration.credentials, webhook_url)
    except ProviderResponseError as e:
        raise SetupError(f"Webhook registration failed: {impl.describe_error(e)}") from e
    except TransportError as e:
        raise SetupError(f"Could not reach {impl.provider.value}: {e}") from e

    try:
        store.create(integration)
    except Exception:
        if webhook_url is not None:
            _remove_webhook(impl, integration)
        raise

    logger.info(
        "integration connected",
        extra={
            "extra_fields": safe_log_context(
                integration_id=integration.id,
                provider=integration.provider.value,
                webhook_registered=webhook_url is not None,
            )
        },
    )
    return integration


def revalidate_integration(integration_id: str, store: IntegrationStore) -> Revalidation:
    """Re-run the credentials check and record the outcome.

    When the credentials are valid, the provider-side webhook state is read
    too (best-effort; None when the provider does not expose it or the
    lookup fails). Webhook health never changes the stored status.

    Returns:
        The integration with its new status (connected or error) and its
        webhook info.

    Raises:
        IntegrationNotFoundError: Unknown id.
    """
    integration = store.get(integration_id)
    if integration is None:
        raise IntegrationNotFoundError(integration_id)

    validation = validate_credentials(integration.provider, integration.credentials)
    status = IntegrationStatus.CONNECTED if validation.valid else IntegrationStatus.ERROR
    store.update_status(integration_id, status)

    webhook = _webhook_info(integration) if validation.valid else None

    logger.info(
        "integration revalidated",
        extra={
            "extra_fields": safe_log_context(
                integration_id=integration_id,
                provider=integration.provider.value,
                status=status.value,
                webhook_healthy=webhook.healthy if webhook else None,
                pending_update_count=webhook.pending_update_count if webhook else None,
            )
        },
    )
    return Revalidation(integration=integration.with_status(status), webhook=webhook)


def _webhook_info(integration: Integration) -> WebhookInfo | None:
    try:
        return get_provider(integration.provider).webhook_info(integration.credentials)
    except (TransportError, ProviderResponseError, InvalidCredentialsError) as e:
        logger.warning(
            "webhook info lookup failed",
            extra={
                "extra_fields": safe_log_context(
                    integration_id=integration.id,
                    provider=integration.provider.value,
                    error_type=type(e).__name__,
                )
            },
        )
        return None


def disconnect_integration(integration_id: str, store: IntegrationStore) -> None:
    """Remove the provider-side webhook (best-effort) and delete the integration.

    Raises:
        IntegrationNotFoundError: Unknown id.
    """
    integration = store.get(integration_id)
    if integration is None:
        raise IntegrationNotFoundError(integration_id)

    webhook_removed = _remove_webhook(get_provider(integration.provider), integration)

    store.delete(integration_id)
    logger.info(
        "integration disconnected",
        extra={
            "extra_fields": safe_log_context(
                integration_id=integration_id,
                provider=integration.provider.value,
                webhook_removed=webhook_removed,
            )
        },
    )
