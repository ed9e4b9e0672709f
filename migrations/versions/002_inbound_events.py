"""inbound_events table - idempotent store for normalized webhook events.

Revision ID: 002_inbound_events
Revises: 001_platform_integrations
Create Date: 2026-09-04
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "002_inbound_events"
down_revision = "001_platform_integrations"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_inbound_events.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.execute("DROP TABLE inbound_events;")
