"""
Runtime credential registry — the live set of credentials the proxy routes to.

Registration persists through the mirror store; removal only flips the held
record so in-flight routing stops before the next file-watch cycle.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime

from credmirror.store.mirror import MirrorStore
from credmirror.store.models import CredentialRecord, CredentialStatus

logger = logging.getLogger(__name__)


class CredentialRegistry:
    def __init__(self, store: MirrorStore):
        self._store = store
        self._records: dict[str, CredentialRecord] = {}
        self._lock = threading.RLock()

    def load(self) -> int:
        """Replace the registry contents with everything in the store."""
        records = self._store.list()
        with self._lock:
            self._records = {r.id: r for r in records}
        logger.info("Registry loaded %d credential(s)", len(records))
        return len(records)

    def register(self, record: CredentialRecord) -> CredentialRecord:
        """Persist ``record`` through the store and start routing to it."""
        path = self._store.save(record)
        with self._lock:
            if path is None:
                self._records.pop(record.id, None)
                return record.clone()
            persisted = self._store.get(self._store.resolver.relative_name(path)) or record
            self._records[persisted.id] = persisted
            return persisted.clone()

    def get(self, credential_id: str) -> CredentialRecord | None:
        with self._lock:
            rec = self._records.get(credential_id)
            return rec.clone() if rec else None

    def update(self, record: CredentialRecord) -> CredentialRecord:
        """Replace the in-memory record without touching the store."""
        with self._lock:
            self._records[record.id] = record.clone()
            return record.clone()

    def mark_removed(self, credential_id: str, message: str = "removed via credential API") -> bool:
        """Flip a held record to disabled. Returns False if it was not registered."""
        with self._lock:
            rec = self._records.get(credential_id)
            if rec is None:
                return False
            rec.disabled = True
            rec.status = CredentialStatus.DISABLED
            rec.status_message = message
            rec.updated_at = datetime.now(UTC)
        logger.info("Credential %s marked removed in runtime registry", credential_id)
        return True

    def active(self) -> list[CredentialRecord]:
        """Records currently eligible for routing."""
        with self._lock:
            return [
                r.clone() for r in self._records.values()
                if not r.disabled and r.status == CredentialStatus.ACTIVE
            ]
