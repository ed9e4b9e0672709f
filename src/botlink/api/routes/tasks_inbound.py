"""Worker route for inbound event handling."""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from botlink.api.task_auth import verify_task_auth
from botlink.infra.db import txn
from botlink.infra.repositories.inbound_events_repository import record_inbound_event
from botlink.infra.repositories.integrations_repository import PostgresIntegrationStore
from botlink.integrations.dispatcher import OutboundDispatcher
from botlink.integrations.models import EventType, NormalizedInboundEvent
from botlink.integrations.registry import IntegrationRegistry
from botlink.observability.correlation import get_correlation_id
from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/inbound", tags=["tasks"])

logger = get_logger(__name__)

_dispatcher = OutboundDispatcher(IntegrationRegistry(PostgresIntegrationStore()))


def _get_dispatcher() -> OutboundDispatcher:
    """Get outbound dispatcher (allows test injection)."""
    return _dispatcher


@router.post("/handle-event")
async def handle_event(request: Request) -> JSONResponse:
    """Store a normalized inbound event.

    Dedupe via inbound_events:
    - If the event was already stored: return 200 "duplicate"
    - Otherwise store it: return 200 "stored"; new message events also get a
      best-effort read receipt

    Expected payload: NormalizedInboundEvent.to_payload().
    """
    correlation_id = get_correlation_id()

    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload: dict[str, Any] = await request.json()
        event = NormalizedInboundEvent.from_payload(payload)
    except (ValueError, KeyError, TypeError, AttributeError):
        logger.warning(
            "invalid event payload",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "invalid event payload"},
        )

    log_ctx = safe_log_context(
        correlationId=correlation_id,
        integration_id=event.integration_id,
        event_type=event.type.value,
        kind=event.kind,
    )

    with txn() as cur:
        is_new = record_inbound_event(cur, event)

    if not is_new:
        logger.info("duplicate inbound event ignored", extra={"extra_fields": log_ctx})
        return JSONResponse(status_code=200, content={"ok": True, "result": "duplicate"})

    if event.type == EventType.MESSAGE:
        _get_dispatcher().mark_delivered(event.integration_id, event.external_message_id)

    logger.info("inbound event stored", extra={"extra_fields": log_ctx})
    return JSONResponse(status_code=200, content={"ok": True, "result": "stored"})
