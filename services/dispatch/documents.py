"""Document upload, listing and token-gated viewing with expiry enforcement."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from repositories.dispatch import DispatchRepository
from shared.config.settings import DocumentSettings
from shared.http.errors import (
    AccessDeniedError,
    DispatchValidationError,
    ExpiredResourceError,
    ResourceNotFoundError,
    StorageUnavailableError,
)
from shared.models.base import utcnow
from shared.models.documents import DocumentType, DocumentView, MedicalDocument
from shared.models.emergency import Emergency
from shared.models.users import Identity, Role
from shared.observability.audit import record_dispatch_audit
from shared.observability.logger import get_logger

from .blob_store import BlobNotFoundError, BlobStore
from .pdf import render_symptom_report, sanitize_filename
from .tokens import DocumentTokenCodec
from .tracking import can_access

__all__ = ["DocumentContent", "DocumentService"]

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DocumentContent:
    """Either the document bytes or a short-lived URL to redirect to."""

    document: MedicalDocument
    data: bytes | None = None
    content_type: str | None = None
    redirect_url: str | None = None


class DocumentService:
    def __init__(
        self,
        repository: DispatchRepository,
        blob_store: BlobStore,
        codec: DocumentTokenCodec,
        *,
        settings: DocumentSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._blob_store = blob_store
        self._codec = codec
        self._settings = settings or DocumentSettings()
        self._clock = clock

    async def _load_emergency(self, emergency_id: str) -> Emergency:
        emergency = await self._repository.get_emergency(emergency_id)
        if emergency is None:
            raise ResourceNotFoundError("emergency", emergency_id)
        return emergency

    def _view(self, document: MedicalDocument, identity: Identity) -> DocumentView:
        return DocumentView.build(document, self._codec.issue(document.id, identity.id, identity.role))

    async def _discard(self, document: MedicalDocument) -> bool:
        await self._blob_store.delete(document.blob_key)
        return await self._repository.delete_document(document.id)

    async def upload(
        self,
        identity: Identity,
        emergency_id: str,
        *,
        filename: str,
        content_type: str,
        data: bytes,
        doc_type: str = DocumentType.OTHER.value,
    ) -> DocumentView:
        """Store a patient's file against their emergency for ``document_ttl_minutes``."""

        if identity.role is not Role.PATIENT:
            raise AccessDeniedError("Only patients can upload documents.")
        try:
            kind = DocumentType(doc_type)
        except ValueError as exc:
            allowed = ", ".join(item.value for item in DocumentType)
            raise DispatchValidationError(f"Document type must be one of: {allowed}.", field="type") from exc
        normalized_type = (content_type or "").split(";")[0].strip().lower()
        if normalized_type not in self._settings.allowed_content_types:
            raise DispatchValidationError("Only PDF, JPEG, PNG and WebP files are accepted.", field="file")
        if not data:
            raise DispatchValidationError("The uploaded file is empty.", field="file")
        if len(data) > self._settings.max_upload_bytes:
            raise DispatchValidationError(
                f"Files larger than {self._settings.max_upload_bytes} bytes are rejected.", field="file"
            )

        emergency = await self._load_emergency(emergency_id)
        if emergency.patient_id != identity.id:
            raise AccessDeniedError("Only the patient who triggered this emergency can attach documents.")

        now = self._clock()
        document = MedicalDocument(
            emergency_id=emergency_id,
            type=kind,
            blob_key="",
            filename=sanitize_filename(filename or "document"),
            content_type=normalized_type,
            size_bytes=len(data),
            uploaded_by=identity.id,
            created_at=now,
            expires_at=now + timedelta(minutes=self._settings.document_ttl_minutes),
        )
        document = document.model_copy(
            update={"blob_key": f"emergencies/{emergency_id}/{document.id}-{document.filename}"}
        )
        await self._blob_store.upload(document.blob_key, data, normalized_type)
        try:
            await self._repository.add_document(document)
        except Exception:
            await self._blob_store.delete(document.blob_key)
            raise

        await record_dispatch_audit(
            "document_uploaded",
            actor_id=identity.id,
            actor_role=identity.role.value,
            emergency_id=emergency_id,
            resource_id=document.id,
            metadata={"type": kind.value, "sizeBytes": len(data)},
        )
        return self._view(document, identity)

    async def generate_symptom_report(
        self, identity: Identity, emergency_id: str, text: str, title: str | None = None
    ) -> DocumentView:
        cleaned = " ".join((text or "").split())
        if not cleaned:
            raise DispatchValidationError("Report text is required.", field="text")
        resolved_title = (title or "").strip() or "Symptoms Report"
        data = await asyncio.to_thread(
            render_symptom_report, cleaned, title=resolved_title, generated_at=self._clock()
        )
        return await self.upload(
            identity,
            emergency_id,
            filename=f"{resolved_title}-{emergency_id}.pdf",
            content_type="application/pdf",
            data=data,
            doc_type=DocumentType.REPORT.value,
        )

    async def list_documents(self, identity: Identity, emergency_id: str) -> list[DocumentView]:
        """Unexpired documents of an emergency the requester is party to."""

        emergency = await self._load_emergency(emergency_id)
        if not can_access(emergency, identity):
            raise AccessDeniedError("You are not a party to this emergency.")
        now = self._clock()
        grouped = await self._repository.list_documents([emergency_id])
        return [self._view(doc, identity) for doc in grouped.get(emergency_id, []) if not doc.is_expired(now)]

    async def delete_document(self, identity: Identity, emergency_id: str, document_id: str) -> None:
        emergency = await self._load_emergency(emergency_id)
        if identity.role is not Role.PATIENT or emergency.patient_id != identity.id:
            raise AccessDeniedError("Only the patient who uploaded documents can delete them.")
        document = await self._repository.get_document(document_id)
        if document is None or document.emergency_id != emergency_id:
            raise ResourceNotFoundError("document", document_id)
        await self._discard(document)
        await record_dispatch_audit(
            "document_deleted",
            actor_id=identity.id,
            actor_role=identity.role.value,
            emergency_id=emergency_id,
            resource_id=document_id,
        )

    async def open_document(self, token: str) -> DocumentContent:
        """Resolve a view token to the document bytes, enforcing expiry and party access.

        An expired document is deleted here, so the first late access answers
        410 and any later one answers 404.
        """

        claims = self._codec.verify(token)
        document = await self._repository.get_document(claims.document_id)
        if document is None:
            raise ResourceNotFoundError("document", claims.document_id)

        if document.is_expired(self._clock()):
            await self._discard(document)
            logger.info("document_expired_on_access", document_id=document.id, emergency_id=document.emergency_id)
            await record_dispatch_audit(
                "document_expired",
                actor_id=claims.user_id,
                actor_role=claims.role.value,
                emergency_id=document.emergency_id,
                resource_id=document.id,
            )
            raise ExpiredResourceError("document", document.id)

        emergency = await self._load_emergency(document.emergency_id)
        if not can_access(emergency, claims.identity):
            raise AccessDeniedError("You are not a party to this emergency.")

        await record_dispatch_audit(
            "document_viewed",
            actor_id=claims.user_id,
            actor_role=claims.role.value,
            emergency_id=document.emergency_id,
            resource_id=document.id,
        )
        try:
            blob = await self._blob_store.read(document.blob_key)
        except (BlobNotFoundError, OSError) as exc:
            signed = self._blob_store.sign_url(document.blob_key, self._settings.signed_url_ttl_seconds)
            if signed is None:
                logger.error("document_blob_unavailable", document_id=document.id, error=str(exc))
                raise StorageUnavailableError("The document content is temporarily unavailable.") from exc
            return DocumentContent(document=document, redirect_url=signed)
        return DocumentContent(document=document, data=blob.data, content_type=blob.content_type)
