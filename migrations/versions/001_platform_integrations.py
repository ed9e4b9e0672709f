"""platform_integrations table (credentials encrypted at rest).

Revision ID: 001_platform_integrations
Revises:
Create Date: 2026-09-02
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "001_platform_integrations"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_platform_integrations.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.execute("DROP TABLE platform_integrations;")
