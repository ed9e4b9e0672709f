"""Outbound dispatcher - internal send requests to provider API calls.

Text and template sends are separate operations: providers reject freeform
text outside the engagement window with a recognizable error
(SendErrorCode.OUTSIDE_ENGAGEMENT_WINDOW), and callers retry that case with
a template.

No automatic retries: a retried send can deliver the same message twice.
Read receipts are best-effort and never raise.

Security: NEVER log recipient ids or text. Only log hashes and lengths.
"""

from __future__ import annotations

from collections.abc import Callable

from botlink.observability.correlation import get_correlation_id
from botlink.observability.logging import get_logger
from botlink.observability.redaction import hash_identifier, safe_log_context

from .http import ProviderResponseError, TransportError
from .models import OutboundSendRequest, SendError, SendResult, TemplateRef, TextOptions
from .registry import IntegrationRegistry, IntegrationResolutionError, ResolvedIntegration

logger = get_logger(__name__)


class OutboundDispatcher:
    """Sends messages through the provider bound to an integration."""

    def __init__(self, registry: IntegrationRegistry) -> None:
        self._registry = registry

    def send(self, request: OutboundSendRequest) -> SendResult:
        """Route a request to send_text or send_template by its kind.

        Raises:
            ValueError: If the request is missing the text or template for its kind.
            IntegrationResolutionError: If the integration cannot be used.
            SendError: If the provider rejected the message or was unreachable.
        """
        if request.kind == "template":
            if request.template is None:
                raise ValueError("template request without template")
            return self.send_template(request.integration_id, request.recipient_id, request.template)

        if not request.text:
            raise ValueError("text request without text")
        return self.send_text(
            request.integration_id, request.recipient_id, request.text, request.options
        )

    def send_text(
        self,
        integration_id: str,
        recipient_id: str,
        text: str,
        options: TextOptions | None = None,
    ) -> SendResult:
        """Send freeform text. See send() for raised exceptions."""
        resolved = self._registry.resolve(integration_id)
        return self._dispatch(
            resolved,
            recipient_id,
            kind="text",
            size=len(text),
            call=lambda: resolved.provider.send_text(
                resolved.credentials, recipient_id, text, options
            ),
        )

    def send_template(
        self, integration_id: str, recipient_id: str, template: TemplateRef
    ) -> SendResult:
        """Send a provider template. See send() for raised exceptions."""
        resolved = self._registry.resolve(integration_id)
        return self._dispatch(
            resolved,
            recipient_id,
            kind="template",
            size=len(template.name),
            call=lambda: resolved.provider.send_template(
                resolved.credentials, recipient_id, template
            ),
        )

    def mark_delivered(self, integration_id: str, message_id: str) -> None:
        """Best-effort read receipt. Failures are logged and swallowed."""
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            integration_id=integration_id,
            message_hash=hash_identifier(message_id),
        )
        try:
            resolved = self._registry.resolve(integration_id)
            resolved.provider.mark_delivered(resolved.credentials, message_id)
        except (IntegrationResolutionError, TransportError, ProviderResponseError) as e:
            logger.warning(
                "read receipt failed",
                extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
            )
        except Exception:
            logger.exception("read receipt failed unexpectedly", extra={"extra_fields": log_ctx})

    def _dispatch(
        self,
        resolved: ResolvedIntegration,
        recipient_id: str,
        *,
        kind: str,
        size: int,
        call: Callable[[], SendResult],
    ) -> SendResult:
        provider = resolved.provider
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            integration_id=resolved.integration.id,
            provider=provider.provider.value,
            kind=kind,
            to_hash=hash_identifier(recipient_id),
            size=size,
        )
        logger.info("sending outbound message", extra={"extra_fields": log_ctx})

        try:
            result = call()
        except (TransportError, ProviderResponseError) as e:
            error = provider.translate_error(e)
            self._log_failure(log_ctx, error)
            raise error from e
        except SendError as error:
            self._log_failure(log_ctx, error)
            raise

        logger.info("outbound message sent", extra={"extra_fields": log_ctx})
        return result

    @staticmethod
    def _log_failure(log_ctx: dict[str, str], error: SendError) -> None:
        logger.warning(
            "outbound send failed",
            extra={
                "extra_fields": {
                    **log_ctx,
                    **safe_log_context(
                        error_code=error.code.value,
                        status_code=error.status_code,
                        provider_code=error.provider_code,
                    ),
                }
            },
        )
