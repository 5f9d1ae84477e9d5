"""
Atomic writes for mirrored credential files.

Content goes to a sibling ``*.tmp`` file in the destination directory and is
then renamed over the target, so a watcher sees either the old or the new file
and never a partial one. Temp files are never picked up as credentials.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any

from credmirror.store.errors import MirrorIOError

logger = logging.getLogger(__name__)

TMP_SUFFIX = ".tmp"


def is_temp_file(path: Path | str) -> bool:
    return os.fspath(path).endswith(TMP_SUFFIX)


def write_atomic(path: Path | str, data: bytes, mode: int = 0o600) -> None:
    """Write ``data`` to ``path`` via temp file + rename."""
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    except OSError as e:
        raise MirrorIOError(f"create auth subdir {target.parent}: {e}") from e

    tmp = target.with_name(f".{target.name}.{secrets.token_hex(4)}{TMP_SUFFIX}")
    try:
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except OSError as e:
        remove_quietly(tmp)
        raise MirrorIOError(f"write {target}: {e}") from e


def write_json_atomic(path: Path | str, obj: Any) -> bytes:
    """Serialize ``obj`` compactly and write it atomically. Returns the bytes written."""
    try:
        raw = json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise MirrorIOError(f"marshal metadata for {path}: {e}") from e
    write_atomic(path, raw)
    return raw


def remove_quietly(path: Path | str) -> bool:
    """Remove a file, treating "already absent" as success. Returns True if removed."""
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise MirrorIOError(f"delete file {path}: {e}") from e


def _canonical(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def json_equal(existing: bytes, obj: Any) -> bool:
    """True when ``existing`` holds the same JSON document as ``obj``.

    Compared as canonical text, not with ``==``: ``true`` and ``1`` (or ``1``
    and ``1.0``) are different documents even though Python equates them.
    """
    try:
        return _canonical(json.loads(existing)) == _canonical(obj)
    except (TypeError, ValueError):
        return False
