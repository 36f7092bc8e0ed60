"""Hospital case feed with the document-driven visibility window, plus bed counts."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Callable

from repositories.dispatch import DispatchRepository, RepositoryError
from shared.cache.expiring import ExpiringCache, make_cache_key
from shared.config.settings import TrackingSettings
from shared.http.errors import DispatchValidationError, ResourceNotFoundError, StorageUnavailableError
from shared.models.base import utcnow
from shared.models.documents import DocumentView, MedicalDocument
from shared.models.emergency import Emergency, EmergencyStatus
from shared.models.tracking import BedCountsResponse, FeedItem, FeedPage
from shared.models.users import BedCounts, HospitalUser, PatientSummary, PatientUser, Role
from shared.observability.logger import get_logger

from .tokens import DocumentTokenCodec

__all__ = ["FeedService", "MAX_FEED_LIMIT", "NO_DOCUMENT_WINDOW", "is_visible"]

logger = get_logger(__name__)

NO_DOCUMENT_WINDOW = timedelta(minutes=60)
MAX_FEED_LIMIT = 100


def is_visible(emergency: Emergency, documents: list[MedicalDocument], now: datetime) -> bool:
    """A case stays listed while it has a live document, or for an hour when it never had one."""

    if documents:
        return any(not document.is_expired(now) for document in documents)
    return emergency.triggered_at >= now - NO_DOCUMENT_WINDOW


class FeedService:
    def __init__(
        self,
        repository: DispatchRepository,
        codec: DocumentTokenCodec,
        *,
        settings: TrackingSettings | None = None,
        cache: ExpiringCache[FeedPage] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._codec = codec
        self._settings = settings or TrackingSettings()
        if cache is None:
            cache = ExpiringCache(max_entries=self._settings.max_entries)
        self._cache = cache
        self._clock = clock

    async def _require_hospital(self, hospital_id: str) -> HospitalUser:
        hospital = await self._repository.get_user(hospital_id)
        if not isinstance(hospital, HospitalUser):
            raise ResourceNotFoundError("hospital", hospital_id)
        return hospital

    async def _build_page(
        self, hospital_id: str, status: EmergencyStatus | None, limit: int, offset: int
    ) -> FeedPage:
        now = self._clock()
        emergencies = await self._repository.list_hospital_emergencies(hospital_id, status)
        grouped = await self._repository.list_documents([emergency.id for emergency in emergencies])

        visible: list[Emergency] = []
        seen_patients: set[str] = set()
        for emergency in emergencies:
            if not is_visible(emergency, grouped.get(emergency.id, []), now):
                continue
            if emergency.patient_id in seen_patients:
                continue
            seen_patients.add(emergency.patient_id)
            visible.append(emergency)

        items: list[FeedItem] = []
        for emergency in visible[offset : offset + limit]:
            patient = await self._repository.get_user(emergency.patient_id)
            live = [doc for doc in grouped.get(emergency.id, []) if not doc.is_expired(now)]
            live.sort(key=lambda doc: doc.created_at, reverse=True)
            items.append(
                FeedItem(
                    emergency=emergency,
                    patient=PatientSummary.from_user(patient) if isinstance(patient, PatientUser) else None,
                    documents=[
                        DocumentView.build(doc, self._codec.issue(doc.id, hospital_id, Role.HOSPITAL))
                        for doc in live
                    ],
                )
            )

        total = len(visible)
        return FeedPage(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            page=offset // limit + 1,
            pages=math.ceil(total / limit),
        )

    async def list_hospital_feed(
        self,
        hospital_id: str,
        status: EmergencyStatus | str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> FeedPage:
        """Newest-first cases assigned to the hospital, one per patient, then paginated."""

        if limit < 1 or limit > MAX_FEED_LIMIT:
            raise DispatchValidationError(f"limit must be between 1 and {MAX_FEED_LIMIT}.", field="limit")
        if offset < 0:
            raise DispatchValidationError("offset must not be negative.", field="offset")
        if status is not None and not isinstance(status, EmergencyStatus):
            try:
                status = EmergencyStatus(status)
            except ValueError as exc:
                raise DispatchValidationError(f"Unknown status {status!r}.", field="status") from exc

        key = make_cache_key(
            Role.HOSPITAL.value,
            hospital_id,
            "feed",
            f"status={status.value if status else ''}",
            f"limit={limit}",
            f"offset={offset}",
        )
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            await self._require_hospital(hospital_id)
            page = await self._build_page(hospital_id, status, limit, offset)
        except RepositoryError as exc:
            stale = self._cache.get_if_fresher_than(key, self._settings.stale_window_seconds)
            if stale is None:
                logger.error("feed_read_failed", hospital_id=hospital_id, error=str(exc))
                raise StorageUnavailableError("The case feed is temporarily unavailable.") from exc
            logger.warning("feed_served_stale", hospital_id=hospital_id, error=str(exc))
            return stale.model_copy(update={"stale": True})

        self._cache.set(key, page, self._settings.feed_ttl_seconds)
        return page

    async def get_bed_counts(self, hospital_id: str) -> BedCountsResponse:
        hospital = await self._require_hospital(hospital_id)
        return BedCountsResponse(hospital_id=hospital.id, bed_counts=hospital.bed_counts)

    async def update_bed_counts(self, hospital_id: str, counts: BedCounts) -> BedCountsResponse:
        await self._require_hospital(hospital_id)
        updated = await self._repository.update_bed_counts(hospital_id, counts)
        if updated is None:
            raise ResourceNotFoundError("hospital", hospital_id)
        logger.info("bed_counts_updated", hospital_id=hospital_id, **counts.model_dump())
        return BedCountsResponse(hospital_id=updated.id, bed_counts=updated.bed_counts)
