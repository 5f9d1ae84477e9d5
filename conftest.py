"""
Root-level shared test fixtures.

The mirror store talks to PostgreSQL through an injectable connection factory.
Tests swap in ``FakeDatabase``, an in-memory stand-in that understands the
handful of statements ``credmirror.store.dal`` and the audit logger issue.
"""

from __future__ import annotations

import copy
import json
import threading
from contextlib import contextmanager
from datetime import UTC, datetime

import psycopg2
import pytest

from credmirror.audit.logger import reset_connection_factory, set_connection_factory
from credmirror.store.mirror import MirrorStore


def _unwrap(value):
    # psycopg2.extras.Json keeps the original object on .adapted; round-trip like JSONB does
    adapted = getattr(value, "adapted", value)
    return json.loads(json.dumps(adapted))


class FakeCursor:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.rowcount = -1
        self._result: list[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=()):
        self.db.statements.append(sql)
        if self.db.fail_next is not None:
            err, self.db.fail_next = self.db.fail_next, None
            raise err
        q = " ".join(sql.split())
        with self.db.lock:
            if q.startswith("CREATE"):
                self.db.schema_created = True
                self._result = []
            elif q.startswith("INSERT INTO audit_log"):
                self.db.audit.append(params)
                self._result = [(len(self.db.audit), datetime.now(UTC))]
            elif q.startswith("INSERT INTO"):
                cid, provider, label, file_name, payload, created_at, updated_at = params
                prev = self.db.rows.get(cid)
                self.db.rows[cid] = {
                    "id": cid,
                    "provider": provider,
                    "label": label,
                    "file_name": file_name,
                    "payload": _unwrap(payload),
                    "created_at": prev["created_at"] if prev else created_at,
                    "updated_at": updated_at,
                }
                self.rowcount = 1
            elif q.startswith("DELETE FROM"):
                self.rowcount = 1 if self.db.rows.pop(params[0], None) else 0
            elif q.startswith("SELECT payload, file_name") and "WHERE id" in q:
                row = self.db.rows.get(params[0])
                self._result = [(copy.deepcopy(row["payload"]), row["file_name"])] if row else []
            elif q.startswith("SELECT payload, file_name"):
                ordered = sorted(self.db.rows.values(), key=lambda r: (r["provider"], r["id"]))
                self._result = [(copy.deepcopy(r["payload"]), r["file_name"]) for r in ordered]
            elif q.startswith("SELECT id, payload"):
                ordered = sorted(self.db.rows.values(), key=lambda r: r["id"])
                self._result = [(r["id"], copy.deepcopy(r["payload"])) for r in ordered]
            else:
                raise AssertionError(f"FakeDatabase can't handle: {q}")

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.committed = False

    def cursor(self):
        return FakeCursor(self.db)

    def commit(self):
        self.committed = True

    def rollback(self):
        pass


class FakeDatabase:
    """In-memory provider_credentials + audit_log."""

    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.audit: list[tuple] = []
        self.statements: list[str] = []
        self.schema_created = False
        self.fail_next: Exception | None = None
        self.lock = threading.Lock()

    @contextmanager
    def connect(self):
        yield FakeConnection(self)

    def audit_events(self) -> list[str]:
        return [params[0] for params in self.audit]

    def fail_with(self, message: str = "connection lost") -> None:
        self.fail_next = psycopg2.OperationalError(message)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture(autouse=True)
def _audit_to_fake_db(fake_db):
    """Route audit events into the fake database instead of PostgreSQL."""
    set_connection_factory(lambda: FakeConnection(fake_db))
    yield
    reset_connection_factory()


@pytest.fixture
def auth_dir(tmp_path):
    d = tmp_path / "auths"
    d.mkdir()
    return d


@pytest.fixture
def store(auth_dir, fake_db):
    return MirrorStore(auth_dir, connection_factory=fake_db.connect)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove credmirror env vars that leak between tests."""
    for key in [
        "CREDMIRROR_DB_DSN",
        "CREDMIRROR_DB_HOST",
        "CREDMIRROR_DB_PORT",
        "CREDMIRROR_DB_NAME",
        "CREDMIRROR_DB_USER",
        "CREDMIRROR_DB_PASSWORD",
        "CREDMIRROR_DB_SCHEMA",
        "CREDMIRROR_DB_TABLE",
        "CREDMIRROR_DB_POOL_MIN",
        "CREDMIRROR_DB_POOL_MAX",
        "CREDMIRROR_AUTH_DIR",
        "CREDMIRROR_HOST",
        "CREDMIRROR_PORT",
        "CREDMIRROR_REBUILD_ON_START",
        "CREDMIRROR_LOG_LEVEL",
        "MANAGEMENT_PASSWORD",
    ]:
        monkeypatch.delenv(key, raising=False)
    from credmirror.config import reset_config

    reset_config()
    yield
    reset_config()
