"""Credential CRUD routes.

Handlers are plain ``def`` so FastAPI runs them in its threadpool; the store
does blocking file and database I/O.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Response

from credmirror.api.deps import ApiError, get_registry, get_store, require_management_key
from credmirror.api.models import (
    CreateCredentialRequest,
    CredentialListResponse,
    CredentialResponse,
    SyncResponse,
)
from credmirror.runtime.registry import CredentialRegistry
from credmirror.store.mirror import MirrorStore
from credmirror.store.models import CredentialRecord, CredentialStatus
from credmirror.store.reconcile import ingest_directory

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/credentials",
    tags=["credentials"],
    dependencies=[Depends(require_management_key)],
)


@router.get("", response_model=CredentialListResponse)
def list_credentials(store: MirrorStore = Depends(get_store)):
    records = store.list()
    return {"credentials": [CredentialResponse.from_record(r) for r in records]}


@router.post("", status_code=201, response_model=CredentialResponse)
def create_credential(
    body: CreateCredentialRequest,
    store: MirrorStore = Depends(get_store),
    registry: CredentialRegistry = Depends(get_registry),
):
    if not body.provider:
        raise ApiError(400, "provider is required")

    metadata = dict(body.metadata)
    metadata.setdefault("type", body.provider)
    credential_id = body.id or f"{body.provider.lower()}-{uuid.uuid4()}.json"

    record = CredentialRecord(
        id=credential_id,
        provider=body.provider,
        label=body.label,
        status=CredentialStatus.ACTIVE,
        disabled=body.disabled,
        file_name=credential_id,
        attributes=dict(body.attributes),
        metadata=metadata,
    )
    registered = registry.register(record)
    persisted = store.get(registered.id) or registered
    logger.info("Created credential %s (provider=%s)", persisted.id, persisted.provider)
    return CredentialResponse.from_record(persisted)


@router.post("/sync", response_model=SyncResponse)
def sync_credentials(store: MirrorStore = Depends(get_store)):
    """Run a full auth directory -> database pass."""
    return ingest_directory(store).as_dict()


@router.get("/{credential_id:path}", response_model=CredentialResponse)
def get_credential(credential_id: str, store: MirrorStore = Depends(get_store)):
    record = store.get(credential_id)
    if record is None:
        raise ApiError(404, "credential not found")
    return CredentialResponse.from_record(record)


@router.delete("/{credential_id:path}", status_code=204)
def delete_credential(
    credential_id: str,
    store: MirrorStore = Depends(get_store),
    registry: CredentialRegistry = Depends(get_registry),
):
    rel = store.canonical_id(credential_id)
    if store.get(rel) is None:
        raise ApiError(404, "credential not found")
    store.delete(rel)
    registry.mark_removed(rel)
    return Response(status_code=204)
