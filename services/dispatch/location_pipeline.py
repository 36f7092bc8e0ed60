"""Driver and user position reports: distance, ETA, derived status and write suppression."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Literal

from repositories.dispatch import DispatchRepository, RepositoryError
from shared.config.settings import MatchingSettings, ThrottleSettings
from shared.geo.georank import calculate_distance, calculate_eta, is_nearing, unrounded_distance_m, validate_coordinate
from shared.http.errors import AccessDeniedError, ResourceNotFoundError, StorageUnavailableError
from shared.models.base import GeoPoint, utcnow
from shared.models.emergency import Emergency, EmergencyStatus, NavigationPhase
from shared.models.tracking import LocationReport
from shared.models.users import HospitalUser, Identity, User
from shared.observability.logger import get_logger

from .state_machine import transition

__all__ = ["LocationPipeline"]

logger = get_logger(__name__)


class LocationPipeline:
    """Turns driver GPS pings into tracking numbers and status changes.

    A ping is not written when the previous write is recent, the ambulance
    barely moved and the derived status is unchanged; the caller still gets
    freshly computed numbers.
    """

    def __init__(
        self,
        repository: DispatchRepository,
        *,
        matching: MatchingSettings | None = None,
        throttle: ThrottleSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._matching = matching or MatchingSettings()
        self._throttle = throttle or ThrottleSettings()
        self._clock = clock

    async def _resolve_target(self, emergency: Emergency) -> tuple[Literal["patient", "hospital"], GeoPoint]:
        if emergency.navigation_phase is NavigationPhase.TO_HOSPITAL and emergency.assigned_hospital_id:
            hospital = await self._repository.get_user(emergency.assigned_hospital_id)
            if isinstance(hospital, HospitalUser) and hospital.location is not None:
                return "hospital", hospital.location
        return "patient", emergency.location

    def _is_redundant(self, emergency: Emergency, lat: float, lng: float, status: EmergencyStatus, now: datetime) -> bool:
        last_write = emergency.driver_last_location_update
        previous = emergency.driver_location
        if last_write is None or previous is None:
            return False
        too_soon = (now - last_write).total_seconds() < self._throttle.min_write_interval_seconds
        moved_little = unrounded_distance_m(previous.lat, previous.lng, lat, lng) < self._throttle.min_movement_meters
        return too_soon and moved_little and emergency.status is status

    async def report_driver_location(self, driver_id: str, emergency_id: str, lat: float, lng: float) -> LocationReport:
        lat, lng = validate_coordinate(lat, lng)

        emergency = await self._repository.get_emergency(emergency_id)
        if emergency is None:
            raise ResourceNotFoundError("emergency", emergency_id)
        if emergency.assigned_driver_id != driver_id:
            raise AccessDeniedError("This emergency is not assigned to you.")

        target, point = await self._resolve_target(emergency)
        if emergency.is_completed:
            return LocationReport(
                emergency_id=emergency_id,
                distance_km=emergency.distance_km,
                eta_minutes=emergency.eta_minutes,
                nearing_target=False,
                status=emergency.status,
                target=target,
                persisted=False,
            )

        distance = calculate_distance(lat, lng, point.lat, point.lng)
        eta = calculate_eta(distance, self._matching.average_speed_kmh)
        nearing = is_nearing(distance, self._matching.nearing_radius_km)
        derived = transition(emergency, EmergencyStatus.ARRIVED if nearing else EmergencyStatus.EN_ROUTE)

        now = self._clock()
        report = LocationReport(
            emergency_id=emergency_id,
            distance_km=distance,
            eta_minutes=eta,
            nearing_target=nearing,
            status=derived,
            target=target,
            persisted=False,
        )
        if self._is_redundant(emergency, lat, lng, derived, now):
            return report

        try:
            await self._repository.update_emergency(
                emergency_id,
                {
                    "driver_lat": lat,
                    "driver_lng": lng,
                    "driver_last_location_update": now,
                    "distance_km": distance,
                    "eta_minutes": eta,
                    "status": derived,
                },
            )
        except RepositoryError as exc:
            logger.error("driver_location_write_failed", emergency_id=emergency_id, error=str(exc))
            raise StorageUnavailableError("The driver location could not be saved.") from exc

        if derived is not emergency.status:
            logger.info(
                "emergency_status_changed",
                emergency_id=emergency_id,
                previous=emergency.status.value,
                status=derived.value,
                target=target,
                distance_km=distance,
            )
        return report.model_copy(update={"persisted": True})

    async def update_user_location(
        self, identity: Identity, lat: float, lng: float, address: str | None = None
    ) -> User:
        """Store a self-reported position so later matches use fresh data."""

        lat, lng = validate_coordinate(lat, lng)
        try:
            user = await self._repository.update_user_location(identity.id, GeoPoint(lat=lat, lng=lng), address)
        except RepositoryError as exc:
            raise StorageUnavailableError("The location could not be saved.") from exc
        if user is None:
            raise ResourceNotFoundError("user", identity.id)
        return user
