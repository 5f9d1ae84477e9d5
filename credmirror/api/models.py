"""Request/response models for the credential CRUD surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from credmirror.store.models import CredentialRecord


class CreateCredentialRequest(BaseModel):
    id: str = ""
    provider: str = ""
    label: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    disabled: bool = False

    @field_validator("id", "provider", "label", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("attributes", "metadata", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class CredentialResponse(BaseModel):
    id: str
    provider: str
    label: str = ""
    status: str | None = None
    disabled: bool = False
    attributes: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: CredentialRecord) -> CredentialResponse:
        return cls(
            id=record.id,
            provider=record.provider,
            label=record.label,
            status=record.status.value if record.status else None,
            disabled=record.disabled,
            attributes=dict(record.attributes),
            metadata=dict(record.metadata),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class CredentialListResponse(BaseModel):
    credentials: list[CredentialResponse]


class SyncResponse(BaseModel):
    upserted: int
    deleted: int
    skipped: int
    changed: list[str]
