"""Exception hierarchy for the credential mirror store."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for every failure raised by the mirror store."""


class ValidationError(StoreError):
    """Caller input is unusable: empty id/provider, malformed JSON payload."""


class PathEscapeError(ValidationError):
    """An identifier would resolve outside the managed auth directory."""


class MirrorIOError(StoreError):
    """Filesystem side of the mirror failed (write, rename, remove, read)."""


class StoreDatabaseError(StoreError):
    """Database side of the mirror failed (connection loss, query error)."""
