"""Tests for credmirror.store.mirror — file + row kept in lockstep."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from credmirror.store.errors import (
    MirrorIOError,
    PathEscapeError,
    StoreDatabaseError,
    ValidationError,
)
from credmirror.store.mirror import MirrorStore
from credmirror.store.models import CredentialRecord, CredentialStatus


def _record(cid: str = "gemini-1.json", **kwargs) -> CredentialRecord:
    kwargs.setdefault("provider", "Gemini")
    kwargs.setdefault("metadata", {"type": "gemini", "access_token": "tok"})
    return CredentialRecord(id=cid, **kwargs)


class TestSaveGet:
    def test_save_then_get(self, store, auth_dir):
        path = store.save(_record(label="dev key"))

        assert path == auth_dir / "gemini-1.json"
        rec = store.get("gemini-1.json")
        assert rec is not None
        assert rec.provider == "gemini"
        assert rec.label == "dev key"
        assert rec.metadata == {"type": "gemini", "access_token": "tok"}
        assert rec.attributes["path"] == str(path)
        assert rec.status == CredentialStatus.ACTIVE
        assert rec.updated_at >= rec.created_at

    def test_file_holds_metadata(self, store, auth_dir):
        store.save(_record())
        on_disk = json.loads((auth_dir / "gemini-1.json").read_text())
        assert on_disk == {"type": "gemini", "access_token": "tok"}

    def test_metadata_type_follows_provider(self, store, auth_dir):
        store.save(_record(provider=" Anthropic ", metadata={"api_key": "k"}))
        rec = store.get("gemini-1.json")
        assert rec.provider == "anthropic"
        assert rec.metadata["type"] == "anthropic"
        assert json.loads((auth_dir / "gemini-1.json").read_text())["type"] == "anthropic"

    def test_provider_falls_back_to_metadata_type(self, store):
        store.save(_record(provider="", metadata={"type": "Codex"}))
        assert store.get("gemini-1.json").provider == "codex"

    def test_row_provider_lowercased(self, store, fake_db):
        store.save(_record(provider="GEMINI"))
        assert fake_db.rows["gemini-1.json"]["provider"] == "gemini"
        assert fake_db.rows["gemini-1.json"]["file_name"] == "gemini-1.json"

    def test_nested_id(self, store, auth_dir):
        path = store.save(_record("team/a/gemini.json"))
        assert path == auth_dir / "team" / "a" / "gemini.json"
        assert path.exists()
        assert store.get("team/a/gemini.json").file_name == "team/a/gemini.json"

    def test_id_is_canonicalised(self, store, fake_db):
        store.save(_record("./sub\\gemini.json"))
        assert list(fake_db.rows) == ["sub/gemini.json"]

    def test_caller_timestamps_ignored_on_create(self, store):
        long_ago = datetime(2001, 1, 1, tzinfo=UTC)
        store.save(_record(created_at=long_ago, updated_at=long_ago))
        rec = store.get("gemini-1.json")
        assert rec.created_at > long_ago
        assert rec.updated_at > long_ago

    def test_created_at_preserved_on_update(self, store):
        store.save(_record())
        first = store.get("gemini-1.json")
        store.save(_record(metadata={"type": "gemini", "access_token": "new"}))
        second = store.get("gemini-1.json")
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert second.metadata["access_token"] == "new"

    def test_explicit_status_kept(self, store):
        store.save(_record(status="error", status_message="quota"))
        rec = store.get("gemini-1.json")
        assert rec.status == CredentialStatus.ERROR
        assert rec.status_message == "quota"

    def test_caller_record_not_mutated(self, store):
        rec = _record(provider="Gemini")
        store.save(rec)
        assert rec.provider == "Gemini"
        assert rec.created_at is None
        assert "path" not in rec.attributes

    def test_get_missing_returns_none(self, store):
        assert store.get("nope.json") is None

    def test_get_canonicalises_id(self, store):
        store.save(_record("sub/a.json"))
        assert store.get("./sub/a.json").id == "sub/a.json"
        assert store.get("sub\\a.json").id == "sub/a.json"

    def test_get_traversal_rejected_and_audited(self, store, fake_db):
        with pytest.raises(PathEscapeError):
            store.get("../outside.json")
        assert "auth.path_rejected" in fake_db.audit_events()

    def test_get_requires_id(self, store):
        with pytest.raises(ValidationError):
            store.get("  ")

    def test_save_requires_id(self, store):
        with pytest.raises(ValidationError, match="id required"):
            store.save(_record(""))

    def test_traversal_rejected_nothing_written(self, store, auth_dir, fake_db):
        with pytest.raises(PathEscapeError):
            store.save(_record("../../etc/passwd"))
        assert fake_db.rows == {}
        assert list(auth_dir.parent.rglob("passwd")) == []

    def test_unchanged_file_not_rewritten(self, store, auth_dir):
        store.save(_record())
        with patch("credmirror.store.mirror.write_json_atomic") as writer:
            store.save(_record())
        writer.assert_not_called()

    def test_changed_file_rewritten(self, store, auth_dir):
        store.save(_record())
        store.save(_record(metadata={"type": "gemini", "access_token": "rotated"}))
        assert json.loads((auth_dir / "gemini-1.json").read_text())["access_token"] == "rotated"

    def test_bool_to_int_change_rewrites_file(self, store, auth_dir, fake_db):
        store.save(_record(metadata={"flag": True}))
        store.save(_record(metadata={"flag": 1}))

        on_disk = json.loads((auth_dir / "gemini-1.json").read_text())
        assert on_disk == fake_db.rows["gemini-1.json"]["payload"]["metadata"]
        assert on_disk["flag"] is not True
        assert on_disk["flag"] == 1

    def test_save_is_audited(self, store, fake_db):
        store.save(_record())
        assert "credential.save" in fake_db.audit_events()


class TestDisabledSave:
    def test_disabled_save_deletes(self, store, auth_dir):
        store.save(_record())
        assert store.save(_record(disabled=True)) is None
        assert store.get("gemini-1.json") is None
        assert not (auth_dir / "gemini-1.json").exists()

    def test_disabled_save_of_unknown_record(self, store, fake_db):
        assert store.save(_record("ghost.json", disabled=True)) is None
        assert fake_db.rows == {}


class TestList:
    def test_ordered_by_provider_then_id(self, store):
        store.save(_record("z.json", provider="anthropic"))
        store.save(_record("b.json", provider="gemini"))
        store.save(_record("a.json", provider="gemini"))
        assert [r.id for r in store.list()] == ["z.json", "a.json", "b.json"]

    def test_paths_attached(self, store, auth_dir):
        store.save(_record("x/y.json"))
        (rec,) = store.list()
        assert rec.attributes["path"] == str(auth_dir / "x" / "y.json")

    def test_list_does_not_read_files(self, store, auth_dir):
        store.save(_record())
        (auth_dir / "gemini-1.json").unlink()
        assert [r.id for r in store.list()] == ["gemini-1.json"]

    def test_empty(self, store):
        assert store.list() == []


class TestDelete:
    def test_delete_removes_file_and_row(self, store, auth_dir):
        store.save(_record())
        assert store.delete("gemini-1.json") is True
        assert store.get("gemini-1.json") is None
        assert not (auth_dir / "gemini-1.json").exists()

    def test_delete_tolerates_missing_file(self, store, auth_dir):
        store.save(_record())
        (auth_dir / "gemini-1.json").unlink()
        assert store.delete("gemini-1.json") is True

    def test_delete_missing_everything(self, store):
        assert store.delete("nope.json") is False

    def test_delete_traversal_rejected(self, store, tmp_path):
        outside = tmp_path / "keep.json"
        outside.write_text("{}")
        with pytest.raises(PathEscapeError):
            store.delete("../keep.json")
        assert outside.exists()

    def test_delete_requires_id(self, store):
        with pytest.raises(ValidationError):
            store.delete("")


class TestFailures:
    def test_database_error_wrapped(self, store, fake_db):
        fake_db.fail_with("server closed the connection")
        with pytest.raises(StoreDatabaseError, match="server closed"):
            store.list()

    def test_write_failure_leaves_no_row(self, store, fake_db):
        with patch("credmirror.store.mirror.write_json_atomic", side_effect=MirrorIOError("disk full")):
            with pytest.raises(MirrorIOError):
                store.save(_record())
        assert fake_db.rows == {}

    def test_corrupt_payload(self, store, fake_db):
        fake_db.rows["bad.json"] = {
            "id": "bad.json", "provider": "x", "label": None, "file_name": "bad.json",
            "payload": {"provider": "x"}, "created_at": None, "updated_at": None,
        }
        with pytest.raises(StoreDatabaseError, match="decode payload"):
            store.get("bad.json")


class TestConcurrency:
    def test_distinct_ids(self, store, auth_dir, fake_db):
        errors: list[Exception] = []

        def worker(n: int):
            try:
                store.save(_record(f"gemini-{n}.json", metadata={"type": "gemini", "n": n}))
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(fake_db.rows) == 20
        files = sorted(p.name for p in auth_dir.iterdir())
        assert files == sorted(f"gemini-{n}.json" for n in range(20))

    def test_same_id_converges(self, store, auth_dir, fake_db):
        def worker(n: int):
            store.save(_record(metadata={"type": "gemini", "n": n}))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert list(fake_db.rows) == ["gemini-1.json"]
        on_disk = json.loads((auth_dir / "gemini-1.json").read_text())
        assert on_disk == fake_db.rows["gemini-1.json"]["payload"]["metadata"]
        assert [p.name for p in auth_dir.iterdir()] == ["gemini-1.json"]


class TestSetup:
    def test_creates_auth_dir(self, tmp_path, fake_db):
        target = tmp_path / "fresh" / "auths"
        s = MirrorStore(target, connection_factory=fake_db.connect)
        assert target.is_dir()
        assert s.auth_dir == target

    def test_requires_auth_dir(self, fake_db):
        with pytest.raises(ValidationError):
            MirrorStore("  ", connection_factory=fake_db.connect)

    def test_ensure_schema(self, store, fake_db):
        store.ensure_schema()
        assert fake_db.schema_created
        assert "provider_credentials" in fake_db.statements[-1]

    def test_schema_qualified_table(self, auth_dir, fake_db):
        s = MirrorStore(auth_dir, connection_factory=fake_db.connect, table="creds", schema="helix")
        assert s.table == '"helix"."creds"'

    def test_timestamps_are_utc(self, store):
        store.save(_record())
        rec = store.get("gemini-1.json")
        assert rec.created_at.utcoffset() == timedelta(0)
