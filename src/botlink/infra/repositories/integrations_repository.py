"""Integrations repository - Postgres-backed IntegrationStore.

Uses raw SQL with psycopg2 (no ORM). Credentials are encrypted at rest
(see credentials_vault) and only decrypted on read.

Schema:
    CREATE TABLE platform_integrations (
        id                     TEXT PRIMARY KEY,
        provider               TEXT NOT NULL,
        status                 TEXT NOT NULL,
        credentials_encrypted  TEXT NOT NULL,
        owner_id               TEXT,
        name                   TEXT,
        created_at             TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at             TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    CREATE INDEX ix_platform_integrations_owner ON platform_integrations (owner_id);
"""

from __future__ import annotations

from typing import Any

from botlink.infra.credentials_vault import decrypt_credentials, encrypt_credentials
from botlink.infra.db import fetchall, fetchone, txn
from botlink.integrations.models import Integration, IntegrationStatus, Provider

_COLUMNS = "id, provider, status, credentials_encrypted, owner_id, name, created_at"


def _row_to_integration(row: tuple[Any, ...]) -> Integration:
    integration_id = str(row[0])
    return Integration(
        id=integration_id,
        provider=Provider(row[1]),
        status=IntegrationStatus(row[2]),
        credentials=decrypt_credentials(row[3], associated_data=integration_id),
        owner_id=row[4],
        name=row[5],
        created_at=row[6],
    )


class PostgresIntegrationStore:
    """IntegrationStore over the platform_integrations table.

    Each call runs in its own short transaction.
    """

    def get(self, integration_id: str) -> Integration | None:
        with txn() as cur:
            row = fetchone(
                cur,
                f"SELECT {_COLUMNS} FROM platform_integrations WHERE id = %s",
                (integration_id,),
            )
        return _row_to_integration(row) if row else None

    def create(self, integration: Integration) -> Integration:
        encrypted = encrypt_credentials(
            integration.credentials, associated_data=integration.id
        )
        with txn() as cur:
            cur.execute(
                """
                INSERT INTO platform_integrations (
                    id, provider, status, credentials_encrypted,
                    owner_id, name, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    integration.id,
                    integration.provider.value,
                    integration.status.value,
                    encrypted,
                    integration.owner_id,
                    integration.name,
                    integration.created_at,
                ),
            )
        return integration

    def update_status(self, integration_id: str, status: IntegrationStatus) -> None:
        with txn() as cur:
            cur.execute(
                """
                UPDATE platform_integrations
                SET status = %s, updated_at = now()
                WHERE id = %s
                """,
                (status.value, integration_id),
            )

    def delete(self, integration_id: str) -> bool:
        """Delete an integration. Returns False if it did not exist."""
        with txn() as cur:
            cur.execute(
                "DELETE FROM platform_integrations WHERE id = %s",
                (integration_id,),
            )
            return cur.rowcount > 0

    def list_for_owner(self, owner_id: str) -> list[Integration]:
        with txn() as cur:
            rows = fetchall(
                cur,
                f"""
                SELECT {_COLUMNS} FROM platform_integrations
                WHERE owner_id = %s
                ORDER BY created_at DESC
                """,
                (owner_id,),
            )
        return [_row_to_integration(row) for row in rows]
