"""WhatsApp Business Cloud API (Meta Graph API) provider.

Handles credential probing, the hub.* webhook handshake, X-Hub-Signature-256
verification, webhook payload normalization and outbound messages.

Webhook payload structure:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "changes": [{
      "value": {
        "metadata": {"phone_number_id": "..."},
        "contacts": [{"wa_id": "PHONE", "profile": {"name": "..."}}],
        "messages": [{"from": "PHONE", "id": "wamid...", "timestamp": "...", "type": "text", "text": {"body": "..."}}],
        "statuses": [{"id": "wamid...", "status": "delivered", "timestamp": "...", "recipient_id": "PHONE"}]
      },
      "field": "messages"
    }]
  }]
}

Security: NEVER log access tokens, phone numbers or message text.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from botlink.infra.time import from_unix_timestamp
from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context

from .http import ProviderResponseError, TransportError, request_json
from .models import (
    CredentialValidation,
    EventType,
    InvalidCredentialsError,
    NormalizedInboundEvent,
    Provider,
    SendError,
    SendErrorCode,
    SendResult,
    TemplateRef,
    TextOptions,
    WebhookInfo,
    WebhookVerificationResult,
)
from .verification import SignatureVerificationError, verify_handshake, verify_signature

logger = get_logger(__name__)

# Default Graph API version
DEFAULT_GRAPH_API_VERSION = "v18.0"
DEFAULT_GRAPH_BASE_URL = "https://graph.facebook.com"

SIGNATURE_HEADER = "X-Hub-Signature-256"

_MEDIA_TYPES = frozenset({"image", "audio", "video", "document", "sticker"})

# Meta Cloud API error codes
_WINDOW_CODES = frozenset({131047})
_RECIPIENT_CODES = frozenset({131021, 131026, 131030})
_RATE_LIMIT_CODES = frozenset({4, 80007, 130429, 131048, 131056})
_AUTH_CODES = frozenset({10, 190, 200})


@dataclass(frozen=True)
class WhatsAppCredentials:
    """Typed view over a stored WhatsApp credentials bag."""

    phone_number_id: str
    access_token: str = field(repr=False)
    verify_token: str | None = field(default=None, repr=False)
    business_account_id: str | None = None
    app_secret: str | None = field(default=None, repr=False)

    @classmethod
    def from_bag(cls, bag: Mapping[str, Any]) -> WhatsAppCredentials:
        missing = [key for key in ("phone_number_id", "access_token") if not bag.get(key)]
        if missing:
            raise InvalidCredentialsError(
                f"Missing required credentials: {', '.join(missing)}"
            )
        return cls(
            phone_number_id=str(bag["phone_number_id"]),
            access_token=str(bag["access_token"]),
            verify_token=bag.get("verify_token") or None,
            business_account_id=bag.get("business_account_id") or None,
            app_secret=bag.get("app_secret") or None,
        )


def _graph_url(*parts: str) -> str:
    """Build a Graph API URL from env config.

    Optional env vars:
    - WHATSAPP_GRAPH_BASE_URL (default: https://graph.facebook.com)
    - WHATSAPP_GRAPH_API_VERSION (default: v18.0)
    """
    base_url = os.environ.get("WHATSAPP_GRAPH_BASE_URL", DEFAULT_GRAPH_BASE_URL).rstrip("/")
    api_version = os.environ.get("WHATSAPP_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION)
    return "/".join([base_url, api_version, *parts])


def _auth_headers(creds: WhatsAppCredentials) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {creds.access_token}",
    }


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _error_envelope(body: Mapping[str, Any]) -> dict[str, Any]:
    return _as_dict(body.get("error"))


class WhatsAppProvider:
    """WhatsApp Business Cloud implementation of the provider capabilities."""

    provider = Provider.WHATSAPP
    supports_templates = True

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def parse_credentials(self, bag: Mapping[str, Any]) -> WhatsAppCredentials:
        return WhatsAppCredentials.from_bag(bag)

    def prepare_credentials(self, bag: Mapping[str, Any]) -> dict[str, str]:
        """Drop empty values and generate a verify_token when none was given."""
        prepared = {k: str(v) for k, v in bag.items() if v}
        if not prepared.get("verify_token"):
            prepared["verify_token"] = str(uuid.uuid4())
        return prepared

    def fetch_identity(self, bag: Mapping[str, Any]) -> CredentialValidation:
        """Read-only check: fetch the phone number the credentials belong to.

        Raises:
            InvalidCredentialsError: If the bag is incomplete or the provider
                answered without a phone number id.
            TransportError / ProviderResponseError: On HTTP failure.
        """
        creds = self.parse_credentials(bag)
        body = request_json(
            "GET",
            _graph_url(creds.phone_number_id),
            headers=_auth_headers(creds),
            params={"fields": "id,display_phone_number,verified_name"},
        )
        if not body.get("id"):
            raise InvalidCredentialsError("Unable to verify phone number")

        identity = body.get("display_phone_number") or str(body["id"])
        return CredentialValidation(
            valid=True,
            identity=identity,
            profile={
                "phone_number_id": str(body["id"]),
                "verified_name": body.get("verified_name"),
            },
        )

    def display_name(self, identity: str) -> str:
        return f"WhatsApp: {identity}"

    def on_connect(self, bag: Mapping[str, Any], webhook_url: str | None) -> None:
        """No-op: Meta webhooks are registered in the Meta App dashboard."""
        return None

    def on_disconnect(self, bag: Mapping[str, Any]) -> None:
        return None

    def webhook_info(self, bag: Mapping[str, Any]) -> WebhookInfo | None:
        """None: the Graph API does not expose per-number webhook delivery state."""
        return None

    # ------------------------------------------------------------------
    # Webhook verification
    # ------------------------------------------------------------------

    def verify_handshake(
        self,
        bag: Mapping[str, Any],
        *,
        mode: str | None,
        token: str | None,
        challenge: str | None,
    ) -> WebhookVerificationResult:
        return verify_handshake(
            mode=mode,
            token=token,
            challenge=challenge,
            verify_token=bag.get("verify_token"),
        )

    def verify_delivery(
        self, bag: Mapping[str, Any], body: bytes, headers: Mapping[str, str]
    ) -> bool:
        """Check X-Hub-Signature-256 when an app_secret is stored.

        Without an app_secret the delivery is accepted unsigned.
        """
        app_secret = bag.get("app_secret")
        if not app_secret:
            return True
        signature = headers.get(SIGNATURE_HEADER) or headers.get(SIGNATURE_HEADER.lower())
        try:
            verify_signature(body, signature or "", app_secret)
        except SignatureVerificationError as e:
            logger.warning(
                "whatsapp signature verification failed",
                extra={"extra_fields": safe_log_context(reason=str(e))},
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Inbound normalization
    # ------------------------------------------------------------------

    def normalize(
        self,
        payload: Any,
        *,
        integration_id: str,
        received_at: datetime,
    ) -> list[NormalizedInboundEvent]:
        """Flatten entry[].changes[].value into message and status events.

        Malformed items are skipped one by one; the rest of the batch is kept.
        """
        events: list[NormalizedInboundEvent] = []
        skipped = 0

        for entry in _as_list(_as_dict(payload).get("entry")):
            for change in _as_list(_as_dict(entry).get("changes")):
                value = _as_dict(_as_dict(change).get("value"))
                names = _contact_names(value)

                for message in _as_list(value.get("messages")):
                    event = _message_event(message, names, integration_id, received_at)
                    if event is None:
                        skipped += 1
                    else:
                        events.append(event)

                for status in _as_list(value.get("statuses")):
                    event = _status_event(status, integration_id, received_at)
                    if event is None:
                        skipped += 1
                    else:
                        events.append(event)

        if skipped:
            logger.debug(
                "skipped malformed whatsapp webhook entries",
                extra={
                    "extra_fields": safe_log_context(
                        integration_id=integration_id, skipped=skipped
                    )
                },
            )
        return events

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send_text(
        self,
        bag: Mapping[str, Any],
        recipient_id: str,
        text: str,
        options: TextOptions | None = None,
    ) -> SendResult:
        """Send a freeform text (only valid inside the 24h customer window).

        disable_notification and parse_mode have no Cloud API equivalent.
        """
        options = options or TextOptions()
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient_id,
            "type": "text",
            "text": {"preview_url": bool(options.preview_url), "body": text},
        }
        if options.reply_to_message_id:
            payload["context"] = {"message_id": options.reply_to_message_id}
        return self._post_message(self.parse_credentials(bag), payload)

    def send_template(
        self, bag: Mapping[str, Any], recipient_id: str, template: TemplateRef
    ) -> SendResult:
        """Send a pre-approved template (required to open a conversation)."""
        template_body: dict[str, Any] = {
            "name": template.name,
            "language": {"code": template.language},
        }
        if template.components:
            template_body["components"] = template.components

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient_id,
            "type": "template",
            "template": template_body,
        }
        return self._post_message(self.parse_credentials(bag), payload)

    def mark_delivered(self, bag: Mapping[str, Any], message_id: str) -> None:
        """Send a read receipt for an inbound message."""
        creds = self.parse_credentials(bag)
        request_json(
            "POST",
            _graph_url(creds.phone_number_id, "messages"),
            headers=_auth_headers(creds),
            json_body={
                "messaging_product": "whatsapp",
                "status": "read",
                "message_id": message_id,
            },
        )

    def _post_message(self, creds: WhatsAppCredentials, payload: dict[str, Any]) -> SendResult:
        body = request_json(
            "POST",
            _graph_url(creds.phone_number_id, "messages"),
            headers=_auth_headers(creds),
            json_body=payload,
        )
        messages = _as_list(body.get("messages"))
        message_id = _as_dict(messages[0]).get("id") if messages else None
        if not message_id:
            raise SendError(
                SendErrorCode.PROVIDER_ERROR, "provider response missing message id"
            )
        return SendResult(provider_message_id=str(message_id))

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def describe_error(self, exc: ProviderResponseError) -> str:
        """Human-readable message from Meta's {"error": {"message": ...}} envelope."""
        message = _error_envelope(exc.body).get("message")
        if isinstance(message, str) and message:
            return message
        return str(exc)

    def translate_error(self, exc: TransportError | ProviderResponseError) -> SendError:
        if isinstance(exc, TransportError):
            return SendError(SendErrorCode.TRANSPORT_ERROR, str(exc))

        envelope = _error_envelope(exc.body)
        provider_code = envelope.get("code")
        if not isinstance(provider_code, int) or isinstance(provider_code, bool):
            provider_code = None
        message = self.describe_error(exc)

        return SendError(
            _classify(provider_code, message, exc.status_code),
            message,
            status_code=exc.status_code,
            provider_code=provider_code,
        )


def _classify(provider_code: int | None, message: str, status_code: int) -> SendErrorCode:
    if provider_code in _WINDOW_CODES:
        return SendErrorCode.OUTSIDE_ENGAGEMENT_WINDOW
    if provider_code in _RECIPIENT_CODES:
        return SendErrorCode.INVALID_RECIPIENT
    if provider_code in _RATE_LIMIT_CODES:
        return SendErrorCode.RATE_LIMITED
    if provider_code in _AUTH_CODES:
        return SendErrorCode.AUTHENTICATION_FAILED
    if provider_code is not None and 132000 <= provider_code < 133000:
        return SendErrorCode.TEMPLATE_REJECTED

    if status_code == 429:
        return SendErrorCode.RATE_LIMITED
    if status_code in (401, 403):
        return SendErrorCode.AUTHENTICATION_FAILED

    lowered = message.lower()
    if "re-engagement" in lowered or "24 hour" in lowered:
        return SendErrorCode.OUTSIDE_ENGAGEMENT_WINDOW
    if "phone number" in lowered or "recipient" in lowered or "blocked" in lowered:
        return SendErrorCode.INVALID_RECIPIENT
    if "template" in lowered:
        return SendErrorCode.TEMPLATE_REJECTED
    return SendErrorCode.PROVIDER_ERROR


def _contact_names(value: dict[str, Any]) -> dict[str, str]:
    """Map wa_id -> profile name for the contacts delivered alongside messages."""
    names: dict[str, str] = {}
    for contact in _as_list(value.get("contacts")):
        contact = _as_dict(contact)
        wa_id = contact.get("wa_id")
        name = _as_dict(contact.get("profile")).get("name")
        if wa_id and isinstance(name, str) and name:
            names[str(wa_id)] = name
    return names


def _extract_content(message: dict[str, Any], kind: str) -> tuple[str | None, str | None]:
    """Return (text, media_ref) for a message subtype. Unknown subtypes give (None, None)."""
    body = _as_dict(message.get(kind))
    if kind == "text":
        return _str_or_none(body.get("body")), None
    if kind in _MEDIA_TYPES:
        return _str_or_none(body.get("caption")), _str_or_none(body.get("id"))
    if kind == "button":
        return _str_or_none(body.get("text")), None
    if kind == "interactive":
        reply = _as_dict(body.get("button_reply") or body.get("list_reply"))
        return _str_or_none(reply.get("title")), None
    return None, None


def _message_event(
    message: Any,
    names: dict[str, str],
    integration_id: str,
    received_at: datetime,
) -> NormalizedInboundEvent | None:
    message = _as_dict(message)
    message_id = message.get("id")
    sender = message.get("from")
    if not message_id or not isinstance(message_id, str) or not sender:
        return None

    sender_id = str(sender)
    kind = message.get("type") or "unknown"
    text, media_ref = _extract_content(message, str(kind))

    return NormalizedInboundEvent(
        type=EventType.MESSAGE,
        integration_id=integration_id,
        external_message_id=message_id,
        sender_id=sender_id,
        sender_name=names.get(sender_id),
        text=text,
        media_ref=media_ref,
        occurred_at=from_unix_timestamp(message.get("timestamp")) or received_at,
        kind=str(kind),
        conversation_id=sender_id,
    )


def _status_event(
    status: Any, integration_id: str, received_at: datetime
) -> NormalizedInboundEvent | None:
    status = _as_dict(status)
    message_id = status.get("id")
    recipient = status.get("recipient_id")
    delivery_status = status.get("status")
    if (
        not message_id
        or not isinstance(message_id, str)
        or not recipient
        or not isinstance(delivery_status, str)
    ):
        return None

    return NormalizedInboundEvent(
        type=EventType.STATUS,
        integration_id=integration_id,
        external_message_id=message_id,
        sender_id=str(recipient),
        delivery_status=delivery_status,
        occurred_at=from_unix_timestamp(status.get("timestamp")) or received_at,
        conversation_id=str(recipient),
    )
