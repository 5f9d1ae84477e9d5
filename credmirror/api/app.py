"""
credmirror API — credential CRUD over the mirror store.

Start:
  credmirror serve
  # or
  uvicorn credmirror.api.app:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from credmirror import __version__
from credmirror.api.credentials import router as credentials_router
from credmirror.api.deps import ApiError
from credmirror.config import get_config
from credmirror.db.connection import close_pool
from credmirror.runtime.registry import CredentialRegistry
from credmirror.store.errors import StoreError, ValidationError
from credmirror.store.mirror import MirrorStore
from credmirror.store.reconcile import rebuild_from_database

logger = logging.getLogger(__name__)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Attach a unique X-Correlation-Id to every request/response and log the call."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get("x-correlation-id") or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        start = time.monotonic()
        response = await call_next(request)
        response.headers["X-Correlation-Id"] = correlation_id
        logger.info(
            "%s %s -> %d in %.1fms [%s]",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - start) * 1000,
            correlation_id,
        )
        return response


def _startup(app: FastAPI) -> bool:
    """Build the store and registry from config when none were injected. Returns True if built."""
    if app.state.store is not None:
        if app.state.registry is None:
            app.state.registry = CredentialRegistry(app.state.store)
        return False

    cfg = get_config()
    store = MirrorStore.from_config(cfg)
    store.ensure_schema()
    if cfg.rebuild_on_start:
        rebuild_from_database(store)
    registry = CredentialRegistry(store)
    registry.load()
    app.state.store = store
    app.state.registry = registry

    key = app.state.management_key if app.state.management_key is not None else cfg.management_key
    if not key.strip():
        logger.warning("No management key configured; credential API is open to any caller")
    logger.info("Mirroring credentials to %s", store.auth_dir)
    return True


def create_app(
    store: MirrorStore | None = None,
    registry: CredentialRegistry | None = None,
    management_key: str | None = None,
) -> FastAPI:
    """App factory. ``management_key=None`` reads MANAGEMENT_PASSWORD from config."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_pool = _startup(app)
        yield
        if owns_pool:
            close_pool()

    app = FastAPI(title="credmirror", version=__version__, lifespan=lifespan)
    app.state.store = store
    app.state.registry = registry if registry is not None or store is None else CredentialRegistry(store)
    app.state.management_key = management_key

    app.add_middleware(CorrelationMiddleware)
    app.include_router(credentials_router)

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "invalid json payload"}, status_code=400)

    @app.exception_handler(ValidationError)
    async def _store_validation(request: Request, exc: ValidationError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(StoreError)
    async def _store_failure(request: Request, exc: StoreError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=500)

    @app.get("/healthz")
    def healthz():
        reg = app.state.registry
        return {"status": "ok", "active_credentials": len(reg.active()) if reg else 0}

    return app


app = create_app()
