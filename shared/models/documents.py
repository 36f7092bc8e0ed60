"""Medical documents attached to an emergency."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import CamelModel, utcnow


class DocumentType(str, Enum):
    REPORT = "report"
    PRESCRIPTION = "prescription"
    SCAN = "scan"
    OTHER = "other"


class MedicalDocument(CamelModel):
    """Stored document metadata; the bytes live in the blob store under ``blob_key``."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    emergency_id: str
    type: DocumentType = DocumentType.OTHER
    blob_key: str
    filename: str
    content_type: str
    size_bytes: int = Field(ge=0)
    uploaded_by: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class DocumentView(CamelModel):
    """A document as listed to a party, with a short-lived view token."""

    id: str
    emergency_id: str
    type: DocumentType
    filename: str
    content_type: str
    size_bytes: int
    created_at: datetime
    expires_at: datetime
    view_token: str
    view_url: str

    @classmethod
    def build(cls, document: MedicalDocument, token: str) -> "DocumentView":
        return cls(
            id=document.id,
            emergency_id=document.emergency_id,
            type=document.type,
            filename=document.filename,
            content_type=document.content_type,
            size_bytes=document.size_bytes,
            created_at=document.created_at,
            expires_at=document.expires_at,
            view_token=token,
            view_url=f"/documents/view?token={token}",
        )


class GenerateReportRequest(CamelModel):
    emergency_id: str
    text: str = Field(min_length=1)
    title: Optional[str] = "Symptoms Report"


class DocumentListResponse(CamelModel):
    emergency_id: str
    documents: list[DocumentView] = Field(default_factory=list)


__all__ = [
    "DocumentListResponse",
    "DocumentType",
    "DocumentView",
    "GenerateReportRequest",
    "MedicalDocument",
]
