"""Shared FastAPI dependencies — store access and management-key auth."""

from __future__ import annotations

import hmac
import logging

from fastapi import Request

from credmirror.audit.logger import log_event
from credmirror.config import get_config
from credmirror.runtime.registry import CredentialRegistry
from credmirror.store.mirror import MirrorStore

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Rendered as ``{"error": message}`` with ``status_code``."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def get_store(request: Request) -> MirrorStore:
    return request.app.state.store


def get_registry(request: Request) -> CredentialRegistry:
    return request.app.state.registry


def configured_key(request: Request) -> str:
    key = request.app.state.management_key
    if key is None:
        key = get_config().management_key
    return (key or "").strip()


def presented_key(request: Request) -> str:
    """X-Management-Key, else the Authorization header (Bearer scheme optional)."""
    candidate = request.headers.get("x-management-key", "").strip()
    if candidate:
        return candidate
    auth = request.headers.get("authorization", "").strip()
    if not auth:
        return ""
    scheme, _, rest = auth.partition(" ")
    if rest and scheme.lower() == "bearer":
        return rest.strip()
    return auth


def require_management_key(request: Request) -> None:
    """Reject the call unless the shared management key matches. Empty key = open access."""
    key = configured_key(request)
    if not key:
        return
    candidate = presented_key(request)
    if hmac.compare_digest(candidate.encode("utf-8"), key.encode("utf-8")):
        return
    log_event(
        "auth.denied",
        f"Management key rejected for {request.method} {request.url.path}",
        actor=request.client.host if request.client else "unknown",
        details={"method": request.method, "path": request.url.path, "presented": bool(candidate)},
        status="denied",
    )
    raise ApiError(401, "missing or invalid management key")
