"""Lifecycle of an emergency shared by the patient, the hospital and the driver."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from repositories.dispatch import DispatchRepository
from shared.geo.georank import AVERAGE_SPEED_KMH, validate_coordinate
from shared.http.errors import (
    AccessDeniedError,
    DispatchValidationError,
    InvalidTransitionError,
    ResourceNotFoundError,
)
from shared.models.base import utcnow
from shared.models.emergency import (
    DispatchOutcome,
    DriverAction,
    Emergency,
    EmergencyStatus,
    NavigationPhase,
    PatientLocation,
    SeverityAssessment,
    TriggerLocation,
)
from shared.models.users import DriverUser, HospitalUser, PatientUser, is_linked
from shared.observability.audit import record_dispatch_audit
from shared.observability.logger import get_logger

from .geo_services import Geocoder
from .matcher import MatchResult, match, rank_hospitals
from .severity import SeverityScorer, score_symptoms

__all__ = [
    "CreateResult",
    "EmergencyStateMachine",
    "PatientLocationResult",
    "TRANSITIONS",
    "can_transition",
    "transition",
]

logger = get_logger(__name__)

S = EmergencyStatus

# Same-status moves are accepted as no-ops for every non-terminal state.
TRANSITIONS: dict[EmergencyStatus, frozenset[EmergencyStatus]] = {
    S.PENDING: frozenset({S.PENDING, S.ASSIGNED}),
    S.ASSIGNED: frozenset({S.ASSIGNED, S.EN_ROUTE, S.ARRIVED}),
    S.EN_ROUTE: frozenset({S.EN_ROUTE, S.ARRIVED, S.COMPLETED}),
    S.ARRIVED: frozenset({S.ARRIVED, S.EN_ROUTE, S.COMPLETED}),
    S.COMPLETED: frozenset(),
}


def can_transition(current: EmergencyStatus, requested: EmergencyStatus) -> bool:
    return requested in TRANSITIONS[current]


def transition(emergency: Emergency, requested: EmergencyStatus) -> EmergencyStatus:
    """Return ``requested`` if the table allows it from the current status."""

    if not can_transition(emergency.status, requested):
        raise InvalidTransitionError(emergency.status.value, requested.value)
    return requested


@dataclass(frozen=True, slots=True)
class CreateResult:
    emergency: Emergency
    match: MatchResult
    severity: SeverityAssessment

    @property
    def outcome(self) -> DispatchOutcome:
        return self.match.outcome


@dataclass(frozen=True, slots=True)
class PatientLocationResult:
    emergency: Emergency
    updated: bool


class EmergencyStateMachine:
    """Creates emergencies and applies actor actions through the transition table."""

    def __init__(
        self,
        repository: DispatchRepository,
        *,
        scorer: SeverityScorer | None = None,
        geocoder: Geocoder | None = None,
        clock: Callable[[], datetime] = utcnow,
        average_speed_kmh: float = AVERAGE_SPEED_KMH,
    ) -> None:
        self._repository = repository
        self._scorer = scorer
        self._geocoder = geocoder
        self._clock = clock
        self._average_speed_kmh = average_speed_kmh

    async def resolve_location(self, location: TriggerLocation) -> PatientLocation:
        """Validate coordinates, or geocode the address when coordinates are missing."""

        if location.lat is not None or location.lng is not None:
            lat, lng = validate_coordinate(location.lat, location.lng)
            return PatientLocation(lat=lat, lng=lng, address=location.address)
        address = (location.address or "").strip()
        if not address:
            raise DispatchValidationError("Either coordinates or an address is required.", field="location")
        if self._geocoder is None:
            raise DispatchValidationError("Address lookup is not available; coordinates are required.", field="location")
        geocoded = await self._geocoder.geocode(address)
        return PatientLocation(lat=geocoded.lat, lng=geocoded.lng, address=geocoded.formatted or address)

    async def _load(self, emergency_id: str) -> Emergency:
        emergency = await self._repository.get_emergency(emergency_id)
        if emergency is None:
            raise ResourceNotFoundError("emergency", emergency_id)
        return emergency

    async def _apply(self, emergency_id: str, changes: Mapping[str, Any]) -> Emergency:
        updated = await self._repository.update_emergency(emergency_id, changes)
        if updated is None:
            raise ResourceNotFoundError("emergency", emergency_id)
        return updated

    async def create(self, patient_id: str, location: TriggerLocation, symptoms: str | None) -> CreateResult:
        """Score, persist as ``pending``, match, then record the assignment."""

        resolved = await self.resolve_location(location)
        patient = await self._repository.get_user(patient_id)
        if not isinstance(patient, PatientUser):
            raise ResourceNotFoundError("patient", patient_id)

        severity = await score_symptoms(self._scorer, symptoms)
        emergency = await self._repository.add_emergency(
            Emergency(
                patient_id=patient_id,
                location=resolved,
                symptoms=(symptoms or "").strip() or None,
                severity_score=severity.severity_score,
                priority=severity.priority,
                ai_assessment=severity.assessment,
                triggered_at=self._clock(),
            )
        )

        hospitals = await self._repository.list_active_hospitals()
        drivers: list[DriverUser] = []
        ranked = rank_hospitals(resolved, hospitals)
        if ranked and ranked[0].hospital.license_number:
            drivers = await self._repository.list_active_drivers(ranked[0].hospital.license_number)
        result = match(resolved, hospitals, drivers, average_speed_kmh=self._average_speed_kmh)

        changes: dict[str, Any] = {"dispatch_outcome": result.outcome}
        if result.hospital is not None:
            changes["assigned_hospital_id"] = result.hospital.id
            changes["status"] = transition(emergency, S.ASSIGNED)
        if result.driver is not None:
            changes["assigned_driver_id"] = result.driver.id
            changes["distance_km"] = result.distance_km
            changes["eta_minutes"] = result.eta_minutes
            if result.driver.location is not None:
                changes["driver_lat"] = result.driver.location.lat
                changes["driver_lng"] = result.driver.location.lng
        emergency = await self._apply(emergency.id, changes)

        log = logger.warning if result.degraded else logger.info
        log(
            "emergency_dispatched",
            emergency_id=emergency.id,
            outcome=result.outcome.value,
            hospital_id=emergency.assigned_hospital_id,
            driver_id=emergency.assigned_driver_id,
            severity_score=emergency.severity_score,
        )
        await record_dispatch_audit(
            "emergency_triggered",
            actor_id=patient_id,
            actor_role="patient",
            emergency_id=emergency.id,
            outcome=result.outcome.value,
            metadata={"hospitalId": emergency.assigned_hospital_id, "driverId": emergency.assigned_driver_id},
        )
        return CreateResult(emergency=emergency, match=result, severity=severity)

    async def accept_case(self, hospital_id: str, emergency_id: str) -> Emergency:
        """Claim the case for ``hospital_id``; a ``pending`` case becomes ``assigned``."""

        emergency = await self._load(emergency_id)
        hospital = await self._repository.get_user(hospital_id)
        if not isinstance(hospital, HospitalUser):
            raise ResourceNotFoundError("hospital", hospital_id)
        if emergency.is_completed:
            return emergency

        changes: dict[str, Any] = {"assigned_hospital_id": hospital_id, "accepted_at": self._clock()}
        if emergency.status is S.PENDING:
            changes["status"] = transition(emergency, S.ASSIGNED)

        if emergency.assigned_driver_id:
            driver = await self._repository.get_user(emergency.assigned_driver_id)
            if not isinstance(driver, DriverUser) or not is_linked(driver, hospital):
                # Only the assigned driver can finish a trip already under way.
                if emergency.status in (S.EN_ROUTE, S.ARRIVED):
                    logger.warning(
                        "accept_refused_in_transit",
                        emergency_id=emergency_id,
                        hospital_id=hospital_id,
                        driver_id=emergency.assigned_driver_id,
                    )
                    raise InvalidTransitionError(
                        emergency.status.value,
                        S.ASSIGNED.value,
                        detail="The patient is in transit with an ambulance that is not linked to this hospital.",
                    )
                changes.update(assigned_driver_id=None, distance_km=None, eta_minutes=None)

        updated = await self._apply(emergency_id, changes)
        await record_dispatch_audit(
            "case_accepted",
            actor_id=hospital_id,
            actor_role="hospital",
            emergency_id=emergency_id,
            outcome=updated.status.value,
            metadata={"previousHospitalId": emergency.assigned_hospital_id},
        )
        return updated

    async def update_driver_action(self, driver_id: str, emergency_id: str, action: DriverAction) -> Emergency:
        emergency = await self._load(emergency_id)
        if emergency.assigned_driver_id != driver_id:
            raise AccessDeniedError("This emergency is not assigned to you.")
        if emergency.is_completed:
            return emergency

        now = self._clock()
        changes: dict[str, Any]
        if action is DriverAction.PATIENT_LOADED:
            changes = {
                "status": transition(emergency, S.EN_ROUTE),
                "navigation_phase": NavigationPhase.TO_HOSPITAL,
            }
        elif action is DriverAction.ARRIVED_HOSPITAL:
            changes = {"status": transition(emergency, S.ARRIVED), "arrived_at": now}
        else:
            changes = {"status": transition(emergency, S.COMPLETED), "completed_at": now}

        updated = await self._apply(emergency_id, changes)
        logger.info("driver_action_applied", emergency_id=emergency_id, action=action.value, status=updated.status.value)
        await record_dispatch_audit(
            "driver_action",
            actor_id=driver_id,
            actor_role="driver",
            emergency_id=emergency_id,
            outcome=updated.status.value,
            metadata={"action": action.value},
        )
        return updated

    async def update_patient_location(
        self, patient_id: str, emergency_id: str, location: TriggerLocation
    ) -> PatientLocationResult:
        resolved = await self.resolve_location(location)
        emergency = await self._load(emergency_id)
        if emergency.patient_id != patient_id:
            raise AccessDeniedError("Only the patient who triggered this emergency can move it.")
        if emergency.is_completed:
            return PatientLocationResult(emergency=emergency, updated=False)
        updated = await self._apply(emergency_id, {"location": resolved})
        return PatientLocationResult(emergency=updated, updated=True)
