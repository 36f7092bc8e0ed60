"""Cached tracking and assignment reads for the polling dashboards."""

from __future__ import annotations

from repositories.dispatch import DispatchRepository, RepositoryError
from shared.cache.expiring import ExpiringCache, make_cache_key
from shared.config.settings import TrackingSettings
from shared.http.errors import AccessDeniedError, ResourceNotFoundError, StorageUnavailableError
from shared.models.emergency import ACTIVE_DRIVER_STATUSES, Emergency
from shared.models.tracking import DriverAssignment, TrackingView
from shared.models.users import (
    DriverSummary,
    DriverUser,
    HospitalSummary,
    HospitalUser,
    Identity,
    PatientSummary,
    PatientUser,
    Role,
    is_linked,
)
from shared.observability.logger import get_logger

__all__ = ["TrackingService", "can_access"]

logger = get_logger(__name__)


def can_access(emergency: Emergency, identity: Identity) -> bool:
    """The owning patient, the assigned hospital or the assigned driver."""

    if identity.role is Role.PATIENT:
        return emergency.patient_id == identity.id
    if identity.role is Role.HOSPITAL:
        return emergency.assigned_hospital_id == identity.id
    if identity.role is Role.DRIVER:
        return emergency.assigned_driver_id == identity.id
    return False


class TrackingService:
    """Serves tracking views through a short-lived cache keyed by requester.

    When storage fails, an entry younger than the stale window is served with
    ``stale`` set instead of failing the dashboard.
    """

    def __init__(
        self,
        repository: DispatchRepository,
        *,
        settings: TrackingSettings | None = None,
        tracking_cache: ExpiringCache[TrackingView] | None = None,
        assignment_cache: ExpiringCache[tuple[DriverAssignment | None]] | None = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or TrackingSettings()
        if tracking_cache is None:
            tracking_cache = ExpiringCache(max_entries=self._settings.max_entries)
        if assignment_cache is None:
            assignment_cache = ExpiringCache(max_entries=self._settings.max_entries)
        self._tracking_cache = tracking_cache
        self._assignment_cache = assignment_cache

    async def _build_view(self, emergency: Emergency) -> TrackingView:
        hospital_summary: HospitalSummary | None = None
        driver_summary: DriverSummary | None = None
        if emergency.assigned_hospital_id:
            hospital = await self._repository.get_user(emergency.assigned_hospital_id)
            if isinstance(hospital, HospitalUser):
                hospital_summary = HospitalSummary.from_user(hospital)
        if emergency.assigned_driver_id:
            driver = await self._repository.get_user(emergency.assigned_driver_id)
            if isinstance(driver, DriverUser):
                driver_summary = DriverSummary.from_user(driver)
        return TrackingView(
            emergency_id=emergency.id,
            status=emergency.status,
            navigation_phase=emergency.navigation_phase,
            patient_location=emergency.location,
            ambulance_location=emergency.driver_location,
            hospital=hospital_summary,
            driver=driver_summary,
            distance_km=emergency.distance_km,
            eta_minutes=emergency.eta_minutes,
            driver_last_location_update=emergency.driver_last_location_update,
            severity_score=emergency.severity_score,
            priority=emergency.priority,
            triggered_at=emergency.triggered_at,
            accepted_at=emergency.accepted_at,
            arrived_at=emergency.arrived_at,
            completed_at=emergency.completed_at,
        )

    async def get_tracking(self, emergency_id: str, requester: Identity) -> TrackingView:
        key = make_cache_key(requester.role.value, requester.id, "emergency_tracking", emergency_id)
        cached = self._tracking_cache.get(key)
        if cached is not None:
            return cached

        view: TrackingView | None = None
        try:
            emergency = await self._repository.get_emergency(emergency_id)
            if emergency is not None and can_access(emergency, requester):
                view = await self._build_view(emergency)
        except RepositoryError as exc:
            stale = self._tracking_cache.get_if_fresher_than(key, self._settings.stale_window_seconds)
            if stale is None:
                logger.error("tracking_read_failed", emergency_id=emergency_id, error=str(exc))
                raise StorageUnavailableError("Tracking data is temporarily unavailable.") from exc
            logger.warning("tracking_served_stale", emergency_id=emergency_id, error=str(exc))
            return stale.model_copy(update={"stale": True})

        if emergency is None:
            raise ResourceNotFoundError("emergency", emergency_id)
        if view is None:
            raise AccessDeniedError("You are not a party to this emergency.")

        self._tracking_cache.set(key, view, self._settings.tracking_ttl_seconds)
        return view

    async def _find_assignment(self, driver_id: str) -> DriverAssignment | None:
        driver = await self._repository.get_user(driver_id)
        if not isinstance(driver, DriverUser):
            raise ResourceNotFoundError("driver", driver_id)

        for emergency in await self._repository.list_driver_emergencies(driver_id, ACTIVE_DRIVER_STATUSES):
            if not emergency.assigned_hospital_id:
                continue
            hospital = await self._repository.get_user(emergency.assigned_hospital_id)
            if not isinstance(hospital, HospitalUser) or not is_linked(driver, hospital):
                continue
            patient = await self._repository.get_user(emergency.patient_id)
            return DriverAssignment(
                emergency=emergency,
                patient=PatientSummary.from_user(patient) if isinstance(patient, PatientUser) else None,
                hospital=HospitalSummary.from_user(hospital),
            )
        return None

    async def get_driver_assignment(self, driver_id: str) -> DriverAssignment | None:
        """Latest active case of the driver's own fleet, or ``None``."""

        key = make_cache_key(Role.DRIVER.value, driver_id, "assignment")
        cached = self._assignment_cache.get(key)
        if cached is not None:
            return cached[0]

        try:
            assignment = await self._find_assignment(driver_id)
        except RepositoryError as exc:
            stale = self._assignment_cache.get_if_fresher_than(key, self._settings.stale_window_seconds)
            if stale is None:
                logger.error("assignment_read_failed", driver_id=driver_id, error=str(exc))
                raise StorageUnavailableError("Assignment data is temporarily unavailable.") from exc
            logger.warning("assignment_served_stale", driver_id=driver_id, error=str(exc))
            value = stale[0]
            return value.model_copy(update={"stale": True}) if value is not None else None

        self._assignment_cache.set(key, (assignment,), self._settings.assignment_ttl_seconds)
        return assignment
