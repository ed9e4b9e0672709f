"""Send API - outbound messages through an integration.

POST /integrations/{id}/messages
    {"recipient_id": "...", "text": "...", "preview_url": true, "reply_to_message_id": "..."}
    {"recipient_id": "...", "template": {"name": "...", "language": "en_US", "components": [...]}}

Status codes for send failures:
- 502 transport_error (provider unreachable)
- 429 rate_limited
- 422 any other provider rejection
- 404 / 409 when the integration is unknown / not connected
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, model_validator

from botlink.infra.repositories.integrations_repository import PostgresIntegrationStore
from botlink.integrations.dispatcher import OutboundDispatcher
from botlink.integrations.models import (
    OutboundSendRequest,
    SendError,
    SendErrorCode,
    TemplateRef,
    TextOptions,
)
from botlink.integrations.registry import (
    IntegrationNotFoundError,
    IntegrationRegistry,
    IntegrationUnavailableError,
)

router = APIRouter(prefix="/integrations", tags=["messages"])

_dispatcher = OutboundDispatcher(IntegrationRegistry(PostgresIntegrationStore()))

_STATUS_BY_CODE = {
    SendErrorCode.TRANSPORT_ERROR: 502,
    SendErrorCode.RATE_LIMITED: 429,
}


def _get_dispatcher() -> OutboundDispatcher:
    """Get outbound dispatcher (allows test injection)."""
    return _dispatcher


# ── Schemas ───────────────────────────────────────────────


class TemplateBody(BaseModel):
    name: str
    language: str = "en_US"
    components: list[dict[str, Any]] | None = None


class SendMessageBody(BaseModel):
    recipient_id: str
    text: str | None = None
    template: TemplateBody | None = None
    # Text-only options
    preview_url: bool | None = None
    reply_to_message_id: str | None = None
    disable_notification: bool = False
    parse_mode: Literal["HTML", "MarkdownV2"] | None = None

    @model_validator(mode="after")
    def _exactly_one_content(self) -> SendMessageBody:
        if bool(self.text) == (self.template is not None):
            raise ValueError("provide exactly one of text or template")
        return self

    def _options(self) -> TextOptions | None:
        options = TextOptions(
            preview_url=self.preview_url,
            reply_to_message_id=self.reply_to_message_id,
            disable_notification=self.disable_notification,
            parse_mode=self.parse_mode,
        )
        return None if options == TextOptions() else options

    def to_request(self, integration_id: str) -> OutboundSendRequest:
        if self.template is not None:
            return OutboundSendRequest(
                integration_id=integration_id,
                recipient_id=self.recipient_id,
                kind="template",
                template=TemplateRef(**self.template.model_dump()),
            )
        return OutboundSendRequest(
            integration_id=integration_id,
            recipient_id=self.recipient_id,
            text=self.text,
            options=self._options(),
        )


def _error_response(status_code: int, code: str, message: str, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": False,
            "error": {"code": code, "message": message, "retryable": retryable},
        },
    )


# ── POST /integrations/{id}/messages ─────────────────────


@router.post("/{integration_id}/messages")
def send_message(integration_id: str, body: SendMessageBody) -> JSONResponse:
    """Send a text or template message. No automatic retries."""
    try:
        result = _get_dispatcher().send(body.to_request(integration_id))
    except IntegrationNotFoundError as e:
        return _error_response(404, "integration_not_found", str(e))
    except IntegrationUnavailableError as e:
        return _error_response(409, "integration_unavailable", str(e))
    except SendError as e:
        return JSONResponse(
            status_code=_STATUS_BY_CODE.get(e.code, 422),
            content={"ok": False, "error": e.to_dict()},
        )

    return JSONResponse(
        status_code=200,
        content={"ok": True, "provider_message_id": result.provider_message_id},
    )
