"""
Credential mirror store — PostgreSQL rows kept in agreement with a watched directory of JSON files.

Public API:
    MirrorStore(auth_dir)          → list / get / save / delete / persist_auth_files
    rebuild_from_database(store)   → database -> filesystem (startup)
    ingest_directory(store)        → filesystem -> database, full scan
"""

from __future__ import annotations

from credmirror.store.errors import (
    MirrorIOError,
    PathEscapeError,
    StoreDatabaseError,
    StoreError,
    ValidationError,
)
from credmirror.store.mirror import MirrorStore
from credmirror.store.models import CredentialRecord, CredentialStatus
from credmirror.store.reconcile import (
    IngestReport,
    ingest_directory,
    persist_auth_files,
    rebuild_from_database,
)

__all__ = [
    "CredentialRecord",
    "CredentialStatus",
    "IngestReport",
    "MirrorIOError",
    "MirrorStore",
    "PathEscapeError",
    "StoreDatabaseError",
    "StoreError",
    "ValidationError",
    "ingest_directory",
    "persist_auth_files",
    "rebuild_from_database",
]
