"""
Mirror store — provider credentials in PostgreSQL, mirrored as JSON files on disk.

The database is authoritative for List/Get. Every mutation writes the file
first (atomically) and then upserts the row, both under one store-wide lock,
so the proxy runtime's file watcher always sees a complete file that matches
a row. A crash between the two steps leaves a file without a row; the
reconciliation engine closes that gap.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

import psycopg2
import pydantic

from credmirror.audit.logger import log_event
from credmirror.db.connection import get_connection
from credmirror.store import dal, reconcile
from credmirror.store.atomic import json_equal, remove_quietly, write_json_atomic
from credmirror.store.errors import MirrorIOError, StoreDatabaseError, ValidationError
from credmirror.store.models import CredentialRecord, CredentialStatus
from credmirror.store.paths import PathResolver

logger = logging.getLogger(__name__)


class MirrorStore:
    """List/Get/Save/Delete over credential records, kept in lockstep with ``auth_dir``.

    ``connection_factory`` must return a context manager yielding a psycopg2-style
    connection that commits on clean exit and rolls back on error (the contract
    of ``credmirror.db.get_connection``, which is the default).
    """

    def __init__(
        self,
        auth_dir: Path | str,
        *,
        connection_factory=None,
        table: str | None = None,
        schema: str | None = None,
    ):
        if not str(auth_dir).strip():
            raise ValidationError("auth directory is required")
        self.resolver = PathResolver(auth_dir)
        try:
            self.resolver.root.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            raise MirrorIOError(f"create auth dir {self.resolver.root}: {e}") from e

        self._connect = connection_factory or get_connection
        self._table_raw = table or "provider_credentials"
        self._schema_raw = schema or ""
        self.table = dal.table_name(self._table_raw, self._schema_raw)
        self.lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg=None, **kwargs) -> MirrorStore:
        if cfg is None:
            from credmirror.config import get_config

            cfg = get_config()
        return cls(cfg.auth_dir, table=cfg.db.table, schema=cfg.db.schema, **kwargs)

    @property
    def auth_dir(self) -> Path:
        """The directory the proxy runtime watches."""
        return self.resolver.root

    @contextmanager
    def connection(self) -> Generator:
        """One transaction; psycopg2 and pool failures surface as StoreDatabaseError."""
        try:
            with self._connect() as conn:
                yield conn
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreDatabaseError(f"database error: {e}") from e

    def ensure_schema(self) -> None:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(dal.schema_sql(self._table_raw, self._schema_raw))
        logger.info("Credential schema ensured (%s)", self.table)

    # ─── Reads ────────────────────────────────────────────────────────

    def list(self) -> list[CredentialRecord]:
        """Every credential, ordered by (provider, id). Never touches the files."""
        with self.connection() as conn:
            rows = dal.fetch_all(conn, self.table)
        return [self._decode(payload, file_name) for payload, file_name in rows]

    def get(self, credential_id: str) -> CredentialRecord | None:
        """Single credential by id, or None when there is no such row.

        The id is canonicalised like a save (``./a.json`` finds ``a.json``); a
        traversal attempt raises PathEscapeError.
        """
        rel = self.canonical_id(credential_id)
        with self.connection() as conn:
            row = dal.fetch_one(conn, self.table, rel)
        if row is None:
            return None
        return self._decode(*row)

    def canonical_id(self, credential_id: str) -> str:
        """The database key for ``credential_id``: its forward-slash path relative to the auth dir."""
        if not (credential_id or "").strip():
            raise ValidationError("credential id required")
        return self.resolver.resolve(credential_id).relative

    # ─── Mutations ────────────────────────────────────────────────────

    def save(self, record: CredentialRecord) -> Path | None:
        """Upsert ``record`` and mirror its metadata to disk.

        A record with ``disabled=True`` is a deletion request: the file and row
        are removed and None is returned. Otherwise returns the file path.
        """
        if record is None:
            raise ValidationError("credential is required")
        if not (record.id or "").strip():
            raise ValidationError("credential id required")

        with self.lock:
            rec = record.normalized()
            resolved = self.resolver.resolve(rec.id)
            path, rel = resolved.absolute, resolved.relative

            if rec.disabled:
                remove_quietly(path)
                with self.connection() as conn:
                    dal.delete_row(conn, self.table, rel)
                logger.info("Credential %s disabled; file and row removed", rel)
                log_event("credential.delete", f"Disabled credential {rel}", target=rel,
                          details={"provider": rec.provider, "reason": "disabled"})
                return None

            with self.connection() as conn:
                existing = dal.fetch_one(conn, self.table, rel)
                self._write_metadata(path, rec.metadata)

                now = datetime.now(UTC)
                rec.created_at = self._decode(*existing).created_at if existing else None
                if rec.created_at is None:
                    rec.created_at = now
                rec.updated_at = now
                if rec.status is None:
                    rec.status = CredentialStatus.ACTIVE
                rec.id = rel
                rec.file_name = rel
                rec.attributes["path"] = str(path)

                dal.upsert_row(conn, self.table, rec)

        logger.info("Saved credential %s (provider=%s)", rel, rec.provider)
        log_event("credential.save", f"Saved credential {rel}", target=rel,
                  details={"provider": rec.provider, "created": existing is None})
        return path

    def delete(self, credential_id: str) -> bool:
        """Remove the file (if any) and the row. Returns True if a row was removed."""
        credential_id = (credential_id or "").strip()
        if not credential_id:
            raise ValidationError("credential id required")

        with self.lock:
            path = self.resolver.resolve(credential_id).absolute
            remove_quietly(path)
            rel = self.resolver.relative_name(path)
            with self.connection() as conn:
                deleted = dal.delete_row(conn, self.table, rel)

        logger.info("Deleted credential %s (row_removed=%s)", rel, deleted)
        log_event("credential.delete", f"Deleted credential {rel}", target=rel,
                  details={"row_removed": deleted})
        return deleted

    def persist_auth_files(self, *paths: Path | str) -> reconcile.IngestReport:
        """Ingest files written by the auth subsystem back into the database."""
        return reconcile.persist_auth_files(self, paths)

    # ─── Helpers ──────────────────────────────────────────────────────

    def _write_metadata(self, path: Path, metadata: dict) -> None:
        try:
            current = path.read_bytes()
        except FileNotFoundError:
            current = None
        except OSError as e:
            raise MirrorIOError(f"read existing metadata {path}: {e}") from e
        if current is not None and json_equal(current, metadata):
            logger.debug("Mirror file %s unchanged; skipping rewrite", path)
            return
        write_json_atomic(path, metadata)

    def _decode(self, payload, file_name: str) -> CredentialRecord:
        try:
            rec = CredentialRecord.from_payload(payload)
        except pydantic.ValidationError as e:
            raise StoreDatabaseError(f"decode payload for {file_name}: {e}") from e
        name = (file_name or rec.file_name or rec.id).replace("\\", "/")
        rec.file_name = name
        rec.attributes["path"] = str(self.resolver.ensure_absolute(name))
        return rec
