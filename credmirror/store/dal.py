"""
Credential DAL — SQL against the provider_credentials table.

Uses psycopg2 directly. Every function takes an open connection; transaction
boundaries belong to the caller (``MirrorStore`` or the reconciliation engine).
"""

from __future__ import annotations

import logging
from typing import Any

from psycopg2.extras import Json

from credmirror.store.models import CredentialRecord

logger = logging.getLogger(__name__)

_CREDENTIALS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    label TEXT,
    file_name TEXT NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS {index}
    ON {table} (provider);
"""

_AUDIT_DDL = """
CREATE TABLE IF NOT EXISTS audit_log (
    id BIGSERIAL PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    event_type TEXT NOT NULL,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    target TEXT,
    details JSONB,
    status TEXT NOT NULL DEFAULT 'ok'
);

CREATE INDEX IF NOT EXISTS idx_audit_log_event_type
    ON audit_log (event_type, timestamp DESC);
"""


def quote_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def table_name(table: str, schema: str = "") -> str:
    """Quoted, optionally schema-qualified table name."""
    if not schema:
        return quote_identifier(table)
    return f"{quote_identifier(schema)}.{quote_identifier(table)}"


def schema_sql(table: str, schema: str = "") -> str:
    """Idempotent DDL for the credential table and the audit log."""
    index = quote_identifier(f"idx_{table}_provider")
    parts = []
    if schema:
        parts.append(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(schema)};")
    parts.append(_CREDENTIALS_DDL.format(table=table_name(table, schema), index=index))
    parts.append(_AUDIT_DDL)
    return "\n".join(parts)


def upsert_row(conn, table: str, record: CredentialRecord) -> None:
    """Insert or update a credential row keyed by id. ``created_at`` is kept on update."""
    rel = record.file_name or record.id
    with conn.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO {table} (id, provider, label, file_name, payload, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                provider = EXCLUDED.provider,
                label = EXCLUDED.label,
                file_name = EXCLUDED.file_name,
                payload = EXCLUDED.payload,
                updated_at = EXCLUDED.updated_at
            """,
            (
                record.id,
                record.provider.strip().lower(),
                record.label or None,
                rel,
                Json(record.to_payload()),
                record.created_at,
                record.updated_at,
            ),
        )


def delete_row(conn, table: str, rel: str) -> bool:
    """Delete a credential row. Returns True if a row was deleted."""
    with conn.cursor() as cur:
        cur.execute(f"DELETE FROM {table} WHERE id = %s", (rel,))
        return cur.rowcount > 0


def fetch_all(conn, table: str) -> list[tuple[Any, str]]:
    """(payload, file_name) for every row, ordered by provider then id."""
    with conn.cursor() as cur:
        cur.execute(f"SELECT payload, file_name FROM {table} ORDER BY provider, id")
        return list(cur.fetchall())


def fetch_one(conn, table: str, credential_id: str) -> tuple[Any, str] | None:
    with conn.cursor() as cur:
        cur.execute(f"SELECT payload, file_name FROM {table} WHERE id = %s", (credential_id,))
        return cur.fetchone()


def fetch_mirror_rows(conn, table: str) -> list[tuple[str, Any]]:
    """(id, payload) for every row, ordered by id. Feeds the database -> filesystem rebuild."""
    with conn.cursor() as cur:
        cur.execute(f"SELECT id, payload FROM {table} ORDER BY id")
        return list(cur.fetchall())
