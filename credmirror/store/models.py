"""Credential record models."""

from __future__ import annotations

import copy
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


UNKNOWN_PROVIDER = "unknown"


def normalize_provider(value: Any) -> str:
    """Trimmed, lower-cased provider name, or ``unknown`` when absent or not a string."""
    if isinstance(value, str) and value.strip():
        return value.strip().lower()
    return UNKNOWN_PROVIDER


class CredentialStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    ERROR = "error"
    UNKNOWN = "unknown"


class CredentialRecord(BaseModel):
    """A provider credential as tracked by the store and the proxy runtime.

    ``metadata`` is the content of the mirrored JSON file; everything else is
    bookkeeping kept only in the database payload.
    """

    id: str
    provider: str = ""
    label: str = ""
    status: CredentialStatus | None = None
    status_message: str = ""
    disabled: bool = False
    file_name: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, CredentialStatus):
            return v
        try:
            return CredentialStatus(str(v).strip().lower())
        except ValueError:
            return CredentialStatus.UNKNOWN

    @field_validator("attributes", "metadata", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    def normalized(self) -> CredentialRecord:
        """Copy with provider lower-cased and ``metadata.type`` kept equal to it."""
        rec = self.clone()
        rec.id = rec.id.strip()
        rec.label = rec.label.strip()
        rec.provider = normalize_provider(rec.provider or rec.metadata.get("type"))
        rec.metadata["type"] = rec.provider
        return rec

    def clone(self) -> CredentialRecord:
        return self.model_copy(deep=True)

    def to_payload(self) -> dict[str, Any]:
        """JSON document stored in the ``payload`` column."""
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | str | bytes) -> CredentialRecord:
        if isinstance(payload, (str, bytes)):
            return cls.model_validate_json(payload)
        return cls.model_validate(copy.deepcopy(payload))
