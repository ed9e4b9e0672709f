"""Integration setup endpoints.

POST   /integrations/whatsapp/setup     validate + connect a WhatsApp number
POST   /integrations/telegram/setup     validate + connect a Telegram bot
GET    /integrations?owner_id=          list an owner's integrations
POST   /integrations/{id}/revalidate    re-run the credentials check, report webhook health
DELETE /integrations/{id}               disconnect

Credentials are accepted here and never returned, except the generated
WhatsApp verify_token the user must paste into the Meta App dashboard.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from botlink.infra.repositories.integrations_repository import PostgresIntegrationStore
from botlink.integrations.models import Integration, Provider
from botlink.integrations.registry import IntegrationNotFoundError, IntegrationStore
from botlink.services.integration_setup import (
    SetupError,
    disconnect_integration,
    revalidate_integration,
    setup_integration,
    webhook_url_for,
)

router = APIRouter(prefix="/integrations", tags=["integrations"])

_store = PostgresIntegrationStore()


def _get_store() -> IntegrationStore:
    """Get integration store (allows test injection)."""
    return _store


def _webhook_base_url(request: Request) -> str:
    """Public base URL providers call back. PUBLIC_BASE_URL wins over the request host."""
    return os.environ.get("PUBLIC_BASE_URL") or str(request.base_url)


# ── Schemas ───────────────────────────────────────────────


class WhatsAppSetupRequest(BaseModel):
    owner_id: str | None = None
    phone_number_id: str
    access_token: str
    business_account_id: str | None = None
    verify_token: str | None = None
    app_secret: str | None = None


class TelegramSetupRequest(BaseModel):
    owner_id: str | None = None
    bot_token: str
    webhook_secret: str | None = None


def _credentials(req: BaseModel) -> dict[str, str]:
    return {k: v for k, v in req.model_dump(exclude={"owner_id"}).items() if v}


def _setup(provider: Provider, req: BaseModel, owner_id: str | None, request: Request) -> Integration:
    try:
        return setup_integration(
            provider,
            _credentials(req),
            owner_id,
            _get_store(),
            webhook_base_url=_webhook_base_url(request),
        )
    except SetupError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


# ── Setup ─────────────────────────────────────────────────


@router.post("/whatsapp/setup", status_code=201)
def setup_whatsapp(req: WhatsAppSetupRequest, request: Request) -> dict:
    """Connect a WhatsApp Business number.

    Returns the integration plus the webhook URL and verify token to
    configure in the Meta App dashboard.
    """
    integration = _setup(Provider.WHATSAPP, req, req.owner_id, request)
    return {
        **integration.to_public_dict(),
        "webhook_url": webhook_url_for(_webhook_base_url(request), integration),
        "verify_token": integration.credentials["verify_token"],
    }


@router.post("/telegram/setup", status_code=201)
def setup_telegram(req: TelegramSetupRequest, request: Request) -> dict:
    """Connect a Telegram bot. The webhook is registered with Telegram directly."""
    integration = _setup(Provider.TELEGRAM, req, req.owner_id, request)
    return integration.to_public_dict()


# ── Management ────────────────────────────────────────────


@router.get("")
def list_integrations(owner_id: str) -> dict:
    return {
        "integrations": [i.to_public_dict() for i in _get_store().list_for_owner(owner_id)]
    }


@router.post("/{integration_id}/revalidate")
def revalidate(integration_id: str) -> dict:
    try:
        result = revalidate_integration(integration_id, _get_store())
    except IntegrationNotFoundError as e:
        raise HTTPException(status_code=404, detail="integration_not_found") from e
    return {
        **result.integration.to_public_dict(),
        "webhook": result.webhook.to_public_dict() if result.webhook else None,
    }


@router.delete("/{integration_id}")
def disconnect(integration_id: str) -> dict:
    try:
        disconnect_integration(integration_id, _get_store())
    except IntegrationNotFoundError as e:
        raise HTTPException(status_code=404, detail="integration_not_found") from e
    return {"ok": True}
