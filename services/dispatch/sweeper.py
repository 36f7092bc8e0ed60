"""Periodic removal of expired documents."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable

from repositories.dispatch import DispatchRepository
from shared.models.base import utcnow
from shared.observability.audit import record_dispatch_audit
from shared.observability.logger import get_logger

from .blob_store import BlobStore

__all__ = ["DocumentSweeper"]

logger = get_logger(__name__)


class DocumentSweeper:
    """Deletes documents whose ``expiresAt`` has passed, in batches.

    Deleting an already-missing blob or record is a no-op, so overlapping
    sweeps (or a sweep racing a lazy delete on view) are harmless.
    """

    def __init__(
        self,
        repository: DispatchRepository,
        blob_store: BlobStore,
        *,
        batch_size: int = 200,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._repository = repository
        self._blob_store = blob_store
        self._batch_size = batch_size
        self._clock = clock

    async def sweep_once(self) -> int:
        """Delete every currently expired document and return how many records were removed."""

        now = self._clock()
        removed = 0
        while True:
            batch = await self._repository.list_expired_documents(now, self._batch_size)
            if not batch:
                break
            deleted_in_batch = 0
            for document in batch:
                await self._blob_store.delete(document.blob_key)
                if await self._repository.delete_document(document.id):
                    deleted_in_batch += 1
            removed += deleted_in_batch
            if len(batch) < self._batch_size or deleted_in_batch == 0:
                break

        if removed:
            logger.info("expired_documents_swept", removed=removed)
            await record_dispatch_audit("documents_swept", outcome="ok", metadata={"removed": removed})
        return removed

    async def run_forever(self, interval_seconds: float) -> None:
        """Sweep every ``interval_seconds`` until cancelled; failures are logged and retried next tick."""

        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - keep the periodic task alive
                logger.exception("document_sweep_failed", error=str(exc))
            await asyncio.sleep(interval_seconds)
