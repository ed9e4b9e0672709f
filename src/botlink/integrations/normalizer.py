"""Inbound normalizer - provider webhook payload to NormalizedInboundEvent list.

Deterministic: the same payload and received_at always yield the same
events. The caller captures received_at, so nothing here reads the clock. No
ordering, no deduplication; the inbound event store is idempotent on
(integration_id, type, external_message_id, delivery_status).
"""

from datetime import datetime
from typing import Any

from .models import NormalizedInboundEvent, Provider
from .registry import get_provider


def normalize(
    provider: Provider | str,
    payload: Any,
    *,
    integration_id: str,
    received_at: datetime,
) -> list[NormalizedInboundEvent]:
    """Normalize a parsed webhook body.

    Args:
        provider: Provider tag of the receiving integration.
        payload: Parsed JSON body.
        integration_id: Integration the delivery was addressed to.
        received_at: Fallback occurred_at for items without a provider
            timestamp. Captured once by the caller per delivery.

    Returns:
        Zero or more events. Malformed items are skipped individually.
    """
    return get_provider(provider).normalize(
        payload,
        integration_id=integration_id,
        received_at=received_at,
    )


def task_id_for(event: NormalizedInboundEvent) -> str:
    """Idempotency key for the task that hands an event to the store."""
    parts = [
        "inbound",
        event.integration_id,
        event.type.value,
        event.external_message_id,
    ]
    if event.delivery_status:
        parts.append(event.delivery_status)
    return ":".join(parts)
