"""Inbound events repository - idempotent storage of normalized events.

Uses raw SQL with psycopg2 (no ORM).

Providers redeliver webhooks, so the same event can arrive many times. The
unique key makes every insert after the first a no-op.

Schema:
    CREATE TABLE inbound_events (
        id                   BIGSERIAL PRIMARY KEY,
        integration_id       TEXT NOT NULL,
        event_type           TEXT NOT NULL,
        external_message_id  TEXT NOT NULL,
        delivery_status      TEXT NOT NULL DEFAULT '',
        occurred_at          TIMESTAMPTZ NOT NULL,
        payload              JSONB NOT NULL,
        received_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (integration_id, event_type, external_message_id, delivery_status)
    );
"""

import json

from psycopg2.extensions import cursor as PgCursor

from botlink.integrations.models import NormalizedInboundEvent


def record_inbound_event(cur: PgCursor, event: NormalizedInboundEvent) -> bool:
    """Insert an event unless it was already recorded.

    Args:
        cur: Database cursor (within transaction).
        event: Normalized event.

    Returns:
        True if the event is new, False if it was a duplicate.
    """
    cur.execute(
        """
        INSERT INTO inbound_events (
            integration_id, event_type, external_message_id,
            delivery_status, occurred_at, payload
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (integration_id, event_type, external_message_id, delivery_status)
        DO NOTHING
        """,
        (
            event.integration_id,
            event.type.value,
            event.external_message_id,
            event.delivery_status or "",
            event.occurred_at,
            json.dumps(event.to_payload()),
        ),
    )
    return cur.rowcount > 0
