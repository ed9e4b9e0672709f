"""Telegram Bot API provider.

Telegram has no subscription handshake: the webhook is registered through
setWebhook with a secret_token, and every delivery carries it back in the
X-Telegram-Bot-Api-Secret-Token header. Deliveries are one flat Update
object per request. There are no templates, no engagement window and no
read receipts.

Telegram message ids are only unique within a chat, so normalized events
use "<chat_id>:<message_id>" as the external message id.

Security: the bot token is part of every URL. NEVER log URLs or tokens.
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
from .verification import tokens_match

logger = get_logger(__name__)

DEFAULT_API_BASE_URL = "https://api.telegram.org"

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

_MESSAGE_FIELDS = ("message", "edited_message", "channel_post", "edited_channel_post")

# Checked in order; the first key present names the message subtype
_CONTENT_KINDS = (
    "text",
    "photo",
    "document",
    "audio",
    "voice",
    "video",
    "video_note",
    "animation",
    "sticker",
    "location",
    "contact",
    "poll",
    "dice",
)
_FILE_KINDS = frozenset(
    {"document", "audio", "voice", "video", "video_note", "animation", "sticker"}
)


@dataclass(frozen=True)
class TelegramCredentials:
    """Typed view over a stored Telegram credentials bag."""

    bot_token: str = field(repr=False)
    webhook_secret: str | None = field(default=None, repr=False)

    @classmethod
    def from_bag(cls, bag: Mapping[str, Any]) -> TelegramCredentials:
        if not bag.get("bot_token"):
            raise InvalidCredentialsError("Missing required credentials: bot_token")
        return cls(
            bot_token=str(bag["bot_token"]),
            webhook_secret=bag.get("webhook_secret") or None,
        )


def _method_url(creds: TelegramCredentials, method: str) -> str:
    base_url = os.environ.get("TELEGRAM_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/")
    return f"{base_url}/bot{creds.bot_token}/{method}"


def _call(creds: TelegramCredentials, method: str, params: dict[str, Any] | None = None) -> Any:
    """Call a Bot API method and return its `result`.

    Raises:
        TransportError: On network failure.
        ProviderResponseError: On non-2xx, or a 2xx body with ok=false.
    """
    http_method = "POST" if params is not None else "GET"
    body = request_json(http_method, _method_url(creds, method), json_body=params)
    if not body.get("ok"):
        raise ProviderResponseError(int(body.get("error_code") or 200), body)
    return body.get("result")


def _text_params(options: TextOptions) -> dict[str, Any]:
    """sendMessage parameters for the options Telegram can express.

    reply_to_message_id accepts a bare Bot API id or the "chat:message[:edit:date]"
    external id inbound events carry.
    """
    params: dict[str, Any] = {}
    if options.preview_url is not None:
        params["link_preview_options"] = {"is_disabled": not options.preview_url}
    if options.parse_mode:
        params["parse_mode"] = options.parse_mode
    if options.disable_notification:
        params["disable_notification"] = True
    if options.reply_to_message_id:
        parts = options.reply_to_message_id.split(":")
        message_id = parts[1] if len(parts) > 1 else parts[0]
        if not message_id.isdigit():
            raise SendError(
                SendErrorCode.UNSUPPORTED,
                "reply_to_message_id is not a Telegram message id",
            )
        params["reply_parameters"] = {
            "message_id": int(message_id),
            "allow_sending_without_reply": True,
        }
    return params


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _full_name(user: dict[str, Any]) -> str | None:
    parts = [user.get("first_name"), user.get("last_name")]
    name = " ".join(p for p in parts if isinstance(p, str) and p)
    return name or None


class TelegramProvider:
    """Telegram Bot API implementation of the provider capabilities."""

    provider = Provider.TELEGRAM
    supports_templates = False

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def parse_credentials(self, bag: Mapping[str, Any]) -> TelegramCredentials:
        return TelegramCredentials.from_bag(bag)

    def prepare_credentials(self, bag: Mapping[str, Any]) -> dict[str, str]:
        """Drop empty values and generate a webhook_secret when none was given."""
        prepared = {k: str(v) for k, v in bag.items() if v}
        if not prepared.get("webhook_secret"):
            # secret_token allows only [A-Za-z0-9_-]
            prepared["webhook_secret"] = uuid.uuid4().hex
        return prepared

    def fetch_identity(self, bag: Mapping[str, Any]) -> CredentialValidation:
        """Read-only identity lookup via getMe."""
        creds = self.parse_credentials(bag)
        result = _as_dict(_call(creds, "getMe"))
        if not result.get("id") or not result.get("username"):
            raise InvalidCredentialsError("Invalid response from Telegram")

        return CredentialValidation(
            valid=True,
            identity=f"@{result['username']}",
            profile={
                "bot_id": str(result["id"]),
                "username": result["username"],
                "first_name": result.get("first_name"),
            },
        )

    def display_name(self, identity: str) -> str:
        return identity

    def on_connect(self, bag: Mapping[str, Any], webhook_url: str | None) -> None:
        """Register the webhook URL together with the secret token."""
        if not webhook_url:
            return
        creds = self.parse_credentials(bag)
        params: dict[str, Any] = {"url": webhook_url}
        if creds.webhook_secret:
            params["secret_token"] = creds.webhook_secret
        _call(creds, "setWebhook", params)

    def on_disconnect(self, bag: Mapping[str, Any]) -> None:
        _call(self.parse_credentials(bag), "deleteWebhook", {})

    def webhook_info(self, bag: Mapping[str, Any]) -> WebhookInfo | None:
        """Current webhook state via getWebhookInfo (read-only)."""
        result = _as_dict(_call(self.parse_credentials(bag), "getWebhookInfo"))
        pending = result.get("pending_update_count")
        return WebhookInfo(
            url=result.get("url") or None,
            pending_update_count=pending if isinstance(pending, int) else 0,
            last_error_message=result.get("last_error_message") or None,
            last_error_at=from_unix_timestamp(result.get("last_error_date")),
        )

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
        """Telegram has no GET handshake; any attempt is not verified."""
        return WebhookVerificationResult(verified=False)

    def verify_delivery(
        self, bag: Mapping[str, Any], body: bytes, headers: Mapping[str, str]
    ) -> bool:
        secret = bag.get("webhook_secret")
        if not secret:
            return True
        provided = headers.get(SECRET_HEADER) or headers.get(SECRET_HEADER.lower())
        if not tokens_match(provided, secret):
            logger.warning(
                "telegram secret token mismatch",
                extra={"extra_fields": safe_log_context(header_present=provided is not None)},
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
        """Normalize one Update (or a list of Updates, as getUpdates returns)."""
        updates = payload if isinstance(payload, list) else [payload]
        events: list[NormalizedInboundEvent] = []
        skipped = 0

        for update in updates:
            update = _as_dict(update)
            event = None
            handled = False

            for field_name in _MESSAGE_FIELDS:
                if field_name in update:
                    handled = True
                    event = _message_event(
                        update[field_name], field_name, integration_id, received_at
                    )
                    break
            else:
                if "callback_query" in update:
                    handled = True
                    event = _callback_event(update["callback_query"], integration_id, received_at)

            if event is not None:
                events.append(event)
            elif handled:
                skipped += 1

        if skipped:
            logger.debug(
                "skipped malformed telegram updates",
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
        params: dict[str, Any] = {"chat_id": recipient_id, "text": text}
        if options is not None:
            params.update(_text_params(options))
        result = _as_dict(_call(self.parse_credentials(bag), "sendMessage", params))
        message_id = result.get("message_id")
        if message_id is None:
            raise SendError(
                SendErrorCode.PROVIDER_ERROR, "provider response missing message id"
            )
        return SendResult(provider_message_id=str(message_id))

    def send_template(
        self, bag: Mapping[str, Any], recipient_id: str, template: TemplateRef
    ) -> SendResult:
        raise SendError(
            SendErrorCode.UNSUPPORTED, "Telegram does not support template messages"
        )

    def mark_delivered(self, bag: Mapping[str, Any], message_id: str) -> None:
        """No-op: the Bot API has no read receipts."""
        return None

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def describe_error(self, exc: ProviderResponseError) -> str:
        """Human-readable message from Telegram's {"description": ...} envelope."""
        description = exc.body.get("description")
        if isinstance(description, str) and description:
            return description
        return str(exc)

    def translate_error(self, exc: TransportError | ProviderResponseError) -> SendError:
        if isinstance(exc, TransportError):
            return SendError(SendErrorCode.TRANSPORT_ERROR, str(exc))

        provider_code = exc.body.get("error_code")
        if not isinstance(provider_code, int) or isinstance(provider_code, bool):
            provider_code = None
        status = provider_code or exc.status_code
        message = self.describe_error(exc)
        lowered = message.lower()

        if status == 429:
            code = SendErrorCode.RATE_LIMITED
        elif status == 401:
            code = SendErrorCode.AUTHENTICATION_FAILED
        elif (
            status == 403
            or "chat not found" in lowered
            or "user not found" in lowered
            or "peer_id_invalid" in lowered
            or "blocked" in lowered
        ):
            code = SendErrorCode.INVALID_RECIPIENT
        else:
            code = SendErrorCode.PROVIDER_ERROR

        return SendError(
            code, message, status_code=exc.status_code, provider_code=provider_code
        )


def _content(message: dict[str, Any]) -> tuple[str, str | None, str | None]:
    """Return (kind, text, media_ref) for a Telegram message."""
    kind = next((k for k in _CONTENT_KINDS if k in message), "unknown")
    text = message.get("text") or message.get("caption")
    text = text if isinstance(text, str) else None

    media_ref = None
    if kind == "photo":
        sizes = message.get("photo")
        if isinstance(sizes, list) and sizes:
            # Sizes are ordered smallest to largest
            media_ref = _as_dict(sizes[-1]).get("file_id")
    elif kind in _FILE_KINDS:
        media_ref = _as_dict(message.get(kind)).get("file_id")

    return kind, text, media_ref if isinstance(media_ref, str) else None


def _message_event(
    message: Any,
    field_name: str,
    integration_id: str,
    received_at: datetime,
) -> NormalizedInboundEvent | None:
    message = _as_dict(message)
    message_id = message.get("message_id")
    chat_id = _as_dict(message.get("chat")).get("id")
    if message_id is None or chat_id is None:
        return None

    sender = _as_dict(message.get("from"))
    if sender.get("id") is not None:
        sender_id = str(sender["id"])
        sender_name = _full_name(sender)
    else:
        # Channel posts are signed by the channel itself
        sender_chat = _as_dict(message.get("sender_chat"))
        if sender_chat.get("id") is None:
            return None
        sender_id = str(sender_chat["id"])
        title = sender_chat.get("title")
        sender_name = title if isinstance(title, str) and title else None

    kind, text, media_ref = _content(message)
    external_id = f"{chat_id}:{message_id}"
    occurred_at = from_unix_timestamp(message.get("date"))

    if field_name.startswith("edited_"):
        edit_date = message.get("edit_date")
        external_id = f"{external_id}:edit:{edit_date or 0}"
        occurred_at = from_unix_timestamp(edit_date) or occurred_at
        kind = f"edited_{kind}"

    return NormalizedInboundEvent(
        type=EventType.MESSAGE,
        integration_id=integration_id,
        external_message_id=external_id,
        sender_id=sender_id,
        sender_name=sender_name,
        text=text,
        media_ref=media_ref,
        occurred_at=occurred_at or received_at,
        kind=kind,
        conversation_id=str(chat_id),
    )


def _callback_event(
    callback: Any, integration_id: str, received_at: datetime
) -> NormalizedInboundEvent | None:
    callback = _as_dict(callback)
    callback_id = callback.get("id")
    sender = _as_dict(callback.get("from"))
    if not callback_id or sender.get("id") is None:
        return None

    chat_id = _as_dict(_as_dict(callback.get("message")).get("chat")).get("id")
    data = callback.get("data")

    return NormalizedInboundEvent(
        type=EventType.MESSAGE,
        integration_id=integration_id,
        external_message_id=f"callback:{callback_id}",
        sender_id=str(sender["id"]),
        sender_name=_full_name(sender),
        text=data if isinstance(data, str) else None,
        occurred_at=received_at,
        kind="callback_query",
        conversation_id=str(chat_id) if chat_id is not None else str(sender["id"]),
    )
