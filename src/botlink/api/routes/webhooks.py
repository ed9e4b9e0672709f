"""Inbound webhook routes, one URL per integration.

    GET  /webhooks/{provider}/{integration_id}  subscription handshake
    POST /webhooks/{provider}/{integration_id}  event delivery

Security:
- Deliveries are verified (signature / secret header) before the payload is parsed
- Stored tokens and secrets never appear in responses or logs
- Sender ids and text only live in the task payload, never in logs

IMPORTANT: once a delivery is verified, always return 200, even on errors.
Providers retry on non-2xx, and retries of a half-processed batch are
handled by the idempotent event store, not by the provider.
"""

from fastapi import APIRouter, Query, Request, Response

from botlink.integrations.models import Provider
from botlink.integrations.normalizer import normalize, task_id_for
from botlink.integrations.registry import (
    IntegrationRegistry,
    IntegrationResolutionError,
    ResolvedIntegration,
)
from botlink.infra.repositories.integrations_repository import PostgresIntegrationStore
from botlink.infra.time import utc_now
from botlink.observability.correlation import get_correlation_id
from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context
from botlink.tasks.client import TasksClient

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)

HANDLE_EVENT_PATH = "/tasks/inbound/handle-event"

_registry = IntegrationRegistry(PostgresIntegrationStore())
_tasks_client = TasksClient()


def _get_registry() -> IntegrationRegistry:
    """Get integration registry (allows test injection)."""
    return _registry


def _get_tasks_client() -> TasksClient:
    """Get tasks client instance (allows test injection)."""
    return _tasks_client


def _resolve(provider: str, integration_id: str) -> ResolvedIntegration | None:
    """Resolve an integration addressed by the webhook URL.

    The provider in the path must match the stored integration, so a
    WhatsApp payload can never be fed to a Telegram integration.
    """
    try:
        resolved = _get_registry().resolve(integration_id, require_connected=False)
    except IntegrationResolutionError as e:
        logger.info(
            "webhook for unusable integration",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    integration_id=integration_id,
                    reason=str(e),
                )
            },
        )
        return None
    except Exception as e:
        # Store or vault failure: answer like an unknown integration
        logger.exception(
            "webhook integration lookup failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    integration_id=integration_id,
                    error_type=type(e).__name__,
                )
            },
        )
        return None

    if resolved.integration.provider.value != provider:
        logger.warning(
            "webhook provider mismatch",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    integration_id=integration_id,
                    path_provider=provider,
                )
            },
        )
        return None
    return resolved


@router.get("/{provider}/{integration_id}")
async def webhook_verify(
    provider: Provider,
    integration_id: str,
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
) -> Response:
    """Webhook subscription handshake.

    Returns:
        200 with hub.challenge as plain text if verified.
        403 if not verified.
        404 if the integration does not exist.
    """
    resolved = _resolve(provider.value, integration_id)
    if resolved is None:
        return Response(status_code=404, content="not found")

    result = resolved.provider.verify_handshake(
        resolved.credentials,
        mode=hub_mode,
        token=hub_verify_token,
        challenge=hub_challenge,
    )

    log_ctx = safe_log_context(
        correlationId=get_correlation_id(),
        integration_id=integration_id,
        provider=provider.value,
        hub_mode=hub_mode or "missing",
    )
    if result.verified:
        logger.info("webhook verification successful", extra={"extra_fields": log_ctx})
        return Response(status_code=200, content=result.challenge or "", media_type="text/plain")

    logger.warning("webhook verification failed", extra={"extra_fields": log_ctx})
    return Response(status_code=403, content="verification failed")


@router.post("/{provider}/{integration_id}")
async def webhook_receive(
    provider: Provider,
    integration_id: str,
    request: Request,
) -> Response:
    """Receive a webhook delivery.

    Verify -> normalize -> enqueue one task per event.

    Returns:
        403 if the delivery is not authentic.
        404 if the integration does not exist.
        200 otherwise (including invalid JSON and enqueue failures).
    """
    correlation_id = get_correlation_id()

    resolved = _resolve(provider.value, integration_id)
    if resolved is None:
        return Response(status_code=404, content="not found")

    body_bytes = await request.body()

    if not resolved.provider.verify_delivery(resolved.credentials, body_bytes, request.headers):
        logger.warning(
            "webhook delivery verification failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    integration_id=integration_id,
                    provider=provider.value,
                )
            },
        )
        return Response(status_code=403, content="verification failed")

    log_ctx = safe_log_context(
        correlationId=correlation_id,
        integration_id=integration_id,
        provider=provider.value,
    )

    try:
        payload = await request.json()
    except ValueError:
        logger.warning("invalid json body", extra={"extra_fields": log_ctx})
        return Response(status_code=200, content="ok")

    try:
        events = normalize(
            provider,
            payload,
            integration_id=integration_id,
            received_at=utc_now(),
        )
        tasks_client = _get_tasks_client()
        enqueued = 0
        for event in events:
            if tasks_client.enqueue_http(
                task_id=task_id_for(event),
                url_path=HANDLE_EVENT_PATH,
                payload=event.to_payload(),
                correlation_id=correlation_id,
            ):
                enqueued += 1
    except Exception:
        logger.exception("webhook processing failed", extra={"extra_fields": log_ctx})
        return Response(status_code=200, content="ok")

    logger.info(
        "webhook received",
        extra={"extra_fields": {**log_ctx, **safe_log_context(events=len(events), enqueued=enqueued)}},
    )
    return Response(status_code=200, content="ok")
