"""
Reconciliation between the credential table and the mirrored auth directory.

Two directions:

* database -> filesystem (``rebuild_from_database``): wipe the auth directory
  and rewrite every row's file. Startup only; it races with Save/Delete.
* filesystem -> database (``persist_auth_files``): take paths reported by the
  proxy runtime's watcher (files written by completed login flows, manual
  edits, removals) and upsert or delete the matching rows.

Both are idempotent and safe to re-run.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pydantic

from credmirror.audit.logger import log_event
from credmirror.store import dal
from credmirror.store.atomic import is_temp_file, write_json_atomic
from credmirror.store.errors import (
    MirrorIOError,
    PathEscapeError,
    StoreDatabaseError,
    ValidationError,
)
from credmirror.store.models import CredentialRecord, CredentialStatus, normalize_provider

if TYPE_CHECKING:
    from credmirror.store.mirror import MirrorStore

logger = logging.getLogger(__name__)

LABEL_FIELDS = ("label", "email", "project_id")


@dataclass
class IngestReport:
    """Outcome of one filesystem -> database pass."""

    upserted: int = 0
    deleted: int = 0
    skipped: int = 0
    changed: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def content_hash(metadata: dict[str, Any]) -> str:
    """SHA-256 over canonical JSON (sorted keys, compact separators)."""
    payload = json.dumps(metadata, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def preferred_label(metadata: dict[str, Any]) -> str:
    """First non-blank string among label, email, project_id."""
    for key in LABEL_FIELDS:
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


# ─── Filesystem -> database ──────────────────────────────────────────


def persist_auth_files(store: MirrorStore, paths: Iterable[Path | str]) -> IngestReport:
    """Sync externally written auth files back into the credential table.

    Paths outside the auth directory are skipped without being read. A path
    whose file no longer exists deletes its row. Empty files are skipped.
    Invalid JSON aborts the pass with ValidationError.
    """
    report = IngestReport()
    cleaned = [str(p).strip() for p in paths if str(p).strip()]
    if not cleaned:
        return report

    with store.lock:
        for raw in cleaned:
            full = store.resolver.ensure_absolute(raw)
            if is_temp_file(full):
                report.skipped += 1
                continue
            rel = store.resolver.relative_or_none(full)
            if rel is None:
                logger.debug("Ignoring %s: outside auth dir %s", full, store.auth_dir)
                report.skipped += 1
                continue
            try:
                data = full.read_bytes()
            except FileNotFoundError:
                _ingest_removal(store, rel, report)
                continue
            except IsADirectoryError:
                report.skipped += 1
                continue
            except OSError as e:
                raise MirrorIOError(f"read {full}: {e}") from e

            if not data.strip():
                logger.debug("Skipping empty auth file %s", full)
                report.skipped += 1
                continue
            _ingest_file(store, full, rel, data, report)

    if report.upserted or report.deleted:
        log_event(
            "credential.ingest",
            f"Ingested {report.upserted} auth file(s), removed {report.deleted} row(s)",
            details=report.as_dict(),
        )
    return report


def _ingest_removal(store: MirrorStore, rel: str, report: IngestReport) -> None:
    with store.connection() as conn:
        if dal.delete_row(conn, store.table, rel):
            report.deleted += 1
            logger.info("Auth file %s removed; deleted its row", rel)


def _ingest_file(
    store: MirrorStore, full: Path, rel: str, data: bytes, report: IngestReport
) -> None:
    try:
        metadata = json.loads(data)
    except ValueError as e:
        raise ValidationError(f"invalid json {full}: {e}") from e
    if not isinstance(metadata, dict):
        raise ValidationError(f"invalid json {full}: expected an object")

    try:
        modified = datetime.fromtimestamp(full.stat().st_mtime, UTC)
    except OSError:
        modified = datetime.now(UTC)

    attributes = {"path": str(store.resolver.ensure_absolute(rel))}
    email = metadata.get("email")
    if isinstance(email, str) and email.strip():
        attributes["email"] = email.strip()

    record = CredentialRecord(
        id=rel,
        provider=normalize_provider(metadata.get("type")),
        label=preferred_label(metadata),
        status=CredentialStatus.ACTIVE,
        file_name=rel,
        attributes=attributes,
        metadata=metadata,
        created_at=modified,
        updated_at=modified,
    ).normalized()

    with store.connection() as conn:
        existing = dal.fetch_one(conn, store.table, rel)
        if existing is not None:
            previous = _decode_payload(existing[0], rel)
            if previous.created_at is not None and previous.created_at < modified:
                record.created_at = previous.created_at
            if content_hash(previous.metadata) != content_hash(record.metadata):
                report.changed.append(rel)
        else:
            report.changed.append(rel)
        dal.upsert_row(conn, store.table, record)
    report.upserted += 1


def scan_auth_dir(store: MirrorStore) -> list[Path]:
    """Every ``*.json`` credential file under the auth directory, temp files excluded."""
    return sorted(
        p for p in store.auth_dir.rglob("*.json")
        if p.is_file() and not is_temp_file(p)
    )


def ingest_directory(store: MirrorStore) -> IngestReport:
    """Full filesystem -> database pass without a watcher."""
    files = scan_auth_dir(store)
    logger.info("Ingesting %d auth file(s) from %s", len(files), store.auth_dir)
    return persist_auth_files(store, files)


# ─── Database -> filesystem ──────────────────────────────────────────


def rebuild_from_database(store: MirrorStore) -> int:
    """Recreate the auth directory from the credential table. Returns files written.

    Destructive: everything under the auth directory is removed first.
    """
    with store.lock:
        with store.connection() as conn:
            rows = dal.fetch_mirror_rows(conn, store.table)

        # Decode everything before the wipe so a bad row leaves the directory intact
        planned: list[tuple[Path, dict[str, Any]]] = []
        for credential_id, payload in rows:
            try:
                path = store.resolver.resolve(credential_id).absolute
            except PathEscapeError:
                logger.warning("Skipping row with invalid credential id %r", credential_id)
                continue
            planned.append((path, _decode_payload(payload, credential_id).metadata))

        root = store.auth_dir
        _clear_directory(root)
        for path, metadata in planned:
            write_json_atomic(path, metadata)
        written = len(planned)

    logger.info("Rebuilt auth directory %s from database (%d file(s))", root, written)
    log_event("credential.rebuild", f"Rebuilt auth directory with {written} file(s)",
              details={"root": str(root), "files": written})
    return written


def _decode_payload(payload: Any, credential_id: str) -> CredentialRecord:
    try:
        return CredentialRecord.from_payload(payload)
    except pydantic.ValidationError as e:
        raise StoreDatabaseError(f"decode payload for {credential_id}: {e}") from e


def _clear_directory(root: Path) -> None:
    try:
        root.mkdir(parents=True, exist_ok=True, mode=0o700)
        for child in root.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
    except OSError as e:
        raise MirrorIOError(f"reset auth directory {root}: {e}") from e
