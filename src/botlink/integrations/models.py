"""Provider-agnostic integration models.

Everything crossing the boundary of the integration layer is one of these
types: the stored Integration, the normalized inbound event, and the
outbound request/result pair.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Literal


class Provider(str, Enum):
    """Closed set of supported messaging platforms."""

    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"


class IntegrationStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class EventType(str, Enum):
    MESSAGE = "message"
    STATUS = "status"


class SendErrorCode(str, Enum):
    """Stable classification of outbound failures callers can branch on."""

    OUTSIDE_ENGAGEMENT_WINDOW = "outside_engagement_window"
    INVALID_RECIPIENT = "invalid_recipient"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION_FAILED = "authentication_failed"
    TEMPLATE_REJECTED = "template_rejected"
    UNSUPPORTED = "unsupported"
    TRANSPORT_ERROR = "transport_error"
    PROVIDER_ERROR = "provider_error"


_RETRYABLE_CODES = frozenset({SendErrorCode.TRANSPORT_ERROR, SendErrorCode.RATE_LIMITED})


class InvalidCredentialsError(Exception):
    """Raised when a credentials bag is missing required keys."""

    pass


class SendError(Exception):
    """Outbound send rejected by the provider or lost in transport.

    Attributes:
        code: Classified failure kind.
        message: Provider error message, or the raw transport error.
        status_code: HTTP status returned by the provider, if any.
        provider_code: Provider-specific numeric error code, if any.
    """

    def __init__(
        self,
        code: SendErrorCode,
        message: str,
        *,
        status_code: int | None = None,
        provider_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.provider_code = provider_code

    @property
    def retryable(self) -> bool:
        return self.code in _RETRYABLE_CODES

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class Integration:
    """A configured connection to one external messaging account.

    `credentials` is the decrypted, provider-specific bag. NEVER log it.
    """

    id: str
    provider: Provider
    status: IntegrationStatus
    credentials: dict[str, str] = field(repr=False)
    created_at: datetime
    owner_id: str | None = None
    name: str | None = None

    def with_status(self, status: IntegrationStatus) -> Integration:
        return replace(self, status=status)

    def to_public_dict(self) -> dict[str, Any]:
        """Serializable view without credentials."""
        return {
            "id": self.id,
            "provider": self.provider.value,
            "status": self.status.value,
            "name": self.name,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class NormalizedInboundEvent:
    """Provider-agnostic inbound message or delivery-status change.

    Consumers must be idempotent on `external_message_id`: providers retry
    deliveries and may send them out of order.
    """

    type: EventType
    integration_id: str
    external_message_id: str
    sender_id: str
    occurred_at: datetime
    sender_name: str | None = None
    text: str | None = None
    media_ref: str | None = None
    delivery_status: str | None = None
    kind: str | None = None  # provider subtype, e.g. "text", "image", "reaction"
    conversation_id: str | None = None  # where a reply must be addressed

    def to_payload(self) -> dict[str, Any]:
        """Convert to a JSON-safe dict (task payload)."""
        return {
            "type": self.type.value,
            "integration_id": self.integration_id,
            "external_message_id": self.external_message_id,
            "sender_id": self.sender_id,
            "occurred_at": self.occurred_at.isoformat(),
            "sender_name": self.sender_name,
            "text": self.text,
            "media_ref": self.media_ref,
            "delivery_status": self.delivery_status,
            "kind": self.kind,
            "conversation_id": self.conversation_id,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> NormalizedInboundEvent:
        """Create from a task payload produced by to_payload()."""
        return cls(
            type=EventType(data["type"]),
            integration_id=data["integration_id"],
            external_message_id=data["external_message_id"],
            sender_id=data["sender_id"],
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
            sender_name=data.get("sender_name"),
            text=data.get("text"),
            media_ref=data.get("media_ref"),
            delivery_status=data.get("delivery_status"),
            kind=data.get("kind"),
            conversation_id=data.get("conversation_id"),
        )


@dataclass(frozen=True)
class TemplateRef:
    """Pre-approved provider template used to open a conversation."""

    name: str
    language: str = "en_US"
    components: list[dict[str, Any]] | None = None


@dataclass(frozen=True)
class TextOptions:
    """Optional settings for a text send.

    Providers apply what their API can express and ignore the rest
    (WhatsApp has no silent sends or parse modes). preview_url=None keeps
    the provider default: no preview on WhatsApp, a preview on Telegram.
    """

    preview_url: bool | None = None
    reply_to_message_id: str | None = None
    disable_notification: bool = False
    parse_mode: Literal["HTML", "MarkdownV2"] | None = None


@dataclass(frozen=True)
class OutboundSendRequest:
    integration_id: str
    recipient_id: str
    kind: Literal["text", "template"] = "text"
    text: str | None = None
    template: TemplateRef | None = None
    options: TextOptions | None = None


@dataclass(frozen=True)
class SendResult:
    provider_message_id: str


@dataclass(frozen=True)
class CredentialValidation:
    """Outcome of a read-only credentials check against the provider."""

    valid: bool
    identity: str | None = None
    error: str | None = None
    profile: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookVerificationResult:
    verified: bool
    challenge: str | None = None


@dataclass(frozen=True)
class WebhookInfo:
    """Provider-side view of the webhook an integration registered."""

    url: str | None
    pending_update_count: int = 0
    last_error_message: str | None = None
    last_error_at: datetime | None = None

    @property
    def healthy(self) -> bool:
        return bool(self.url) and self.last_error_message is None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "healthy": self.healthy,
            "pending_update_count": self.pending_update_count,
            "last_error_message": self.last_error_message,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }
