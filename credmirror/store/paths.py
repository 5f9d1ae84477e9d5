"""
Identifier -> path mapping for the mirrored auth directory.

Every credential id doubles as a forward-slash relative path under the
mirror root. Resolution is a closed round-trip: join, normalise, re-derive the
relative path, and refuse anything that climbs out of the root.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from credmirror.audit.logger import log_event
from credmirror.store.errors import PathEscapeError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPath:
    absolute: Path
    relative: str  # forward-slash form, used as the database key


class PathResolver:
    """Maps credential identifiers to files inside ``root``."""

    def __init__(self, root: Path | str):
        self.root = Path(os.path.abspath(os.fspath(root)))

    def resolve(self, identifier: str) -> ResolvedPath:
        """Resolve ``identifier`` to an absolute path under the root.

        Raises ValidationError for empty input and PathEscapeError for any
        identifier with a parent-directory segment or one that lands outside
        the root once normalised.
        """
        raw = (identifier or "").strip()
        if not raw:
            raise ValidationError("credential id required")

        slashed = raw.replace("\\", "/")
        if ".." in PurePosixPath(slashed).parts:
            self._reject(identifier, "parent-directory segment")

        if os.path.isabs(slashed):
            candidate = os.path.normpath(slashed)
        else:
            candidate = os.path.normpath(os.path.join(self.root, *PurePosixPath(slashed).parts))

        rel = os.path.relpath(candidate, self.root)
        if _escapes(rel):
            self._reject(identifier, "path escapes managed directory")

        relative = Path(rel).as_posix()
        return ResolvedPath(absolute=self.root / rel, relative=relative)

    def relative_name(self, path: Path | str) -> str:
        """Canonical relative id for an absolute or root-relative path."""
        rel = self.relative_or_none(path)
        if rel is None:
            self._reject(os.fspath(path), "path outside auth dir")
        return rel

    def relative_or_none(self, path: Path | str) -> str | None:
        """Like relative_name, but returns None instead of rejecting."""
        p = os.fspath(path)
        if not os.path.isabs(p):
            p = os.path.join(self.root, p)
        rel = os.path.relpath(os.path.normpath(p), self.root)
        if _escapes(rel):
            return None
        return Path(rel).as_posix()

    def ensure_absolute(self, path: Path | str) -> Path:
        p = os.fspath(path)
        if os.path.isabs(p):
            return Path(os.path.normpath(p))
        return self.root / PurePosixPath(p.replace("\\", "/"))

    def _reject(self, identifier: str, reason: str) -> None:
        logger.warning("Rejected credential path %r: %s (root=%s)", identifier, reason, self.root)
        log_event(
            "auth.path_rejected",
            f"Rejected credential path {identifier!r}: {reason}",
            target=identifier,
            details={"root": str(self.root), "reason": reason},
            status="denied",
        )
        raise PathEscapeError(f"invalid credential path {identifier!r}: {reason}")


def _escapes(rel: str) -> bool:
    # The root itself is not a credential file either.
    return rel in (os.curdir, os.pardir) or rel.startswith(os.pardir + os.sep)
