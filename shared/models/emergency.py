"""Emergency aggregate, severity assessment and dispatch request/response payloads."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import CamelModel, GeoPoint, utcnow
from .users import DriverSummary, HospitalSummary


class EmergencyStatus(str, Enum):
    """Lifecycle of an emergency, in order."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    COMPLETED = "completed"

    def __str__(self) -> str:  # pragma: no cover - trivial wrapper
        return self.value


ACTIVE_DRIVER_STATUSES = (EmergencyStatus.ASSIGNED, EmergencyStatus.EN_ROUTE, EmergencyStatus.ARRIVED)


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NavigationPhase(str, Enum):
    """Which leg of the trip the ambulance is on."""

    TO_PATIENT = "to_patient"
    TO_HOSPITAL = "to_hospital"


class DriverAction(str, Enum):
    PATIENT_LOADED = "patient_loaded"
    ARRIVED_HOSPITAL = "arrived_hospital"
    HANDOVER_COMPLETE = "handover_complete"


class DispatchOutcome(str, Enum):
    """Machine-readable result of matching a new emergency."""

    DISPATCHED = "dispatched"
    HOSPITAL_ONLY_NO_DRIVER = "hospital_only_no_driver"
    HOSPITAL_ONLY_NO_LICENSE = "hospital_only_no_license"
    HOSPITAL_ONLY_UNRANKED = "hospital_only_unranked"
    NO_HOSPITALS_AVAILABLE = "no_hospitals_available"


class PatientLocation(GeoPoint):
    address: Optional[str] = None


class SeverityAssessment(CamelModel):
    severity_score: int = Field(ge=0, le=100)
    priority: Priority
    assessment: str
    recommended_department: str = "Emergency"
    recommendations: list[str] = Field(default_factory=list)
    should_transport: bool = True


class Emergency(CamelModel):
    """The record shared by the patient, the hospital and the driver."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    patient_id: str
    status: EmergencyStatus = EmergencyStatus.PENDING
    location: PatientLocation
    symptoms: Optional[str] = None
    severity_score: int = Field(default=50, ge=0, le=100)
    priority: Priority = Priority.MEDIUM
    ai_assessment: Optional[str] = "Symptoms received, awaiting analysis"
    assigned_hospital_id: Optional[str] = None
    assigned_driver_id: Optional[str] = None
    navigation_phase: NavigationPhase = NavigationPhase.TO_PATIENT
    dispatch_outcome: Optional[DispatchOutcome] = None
    driver_lat: Optional[float] = None
    driver_lng: Optional[float] = None
    driver_last_location_update: Optional[datetime] = None
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = None
    triggered_at: datetime = Field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status is EmergencyStatus.COMPLETED

    @property
    def driver_location(self) -> GeoPoint | None:
        return GeoPoint.maybe(self.driver_lat, self.driver_lng)


class TriggerLocation(CamelModel):
    """Patient position; coordinates may be omitted when an address is given."""

    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None


class TriggerEmergencyRequest(CamelModel):
    location: TriggerLocation
    symptoms: Optional[str] = None


class TriggerEmergencyResponse(CamelModel):
    emergency_id: str
    outcome: DispatchOutcome
    status: EmergencyStatus
    message: str
    degraded: bool = False
    hospital: Optional[HospitalSummary] = None
    driver: Optional[DriverSummary] = None
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = None
    severity: SeverityAssessment


class UpdatePatientLocationRequest(CamelModel):
    emergency_id: str
    location: TriggerLocation


class PatientLocationResponse(CamelModel):
    emergency_id: str
    status: EmergencyStatus
    location: PatientLocation
    updated: bool


class DriverLocationRequest(CamelModel):
    emergency_id: str
    lat: float
    lng: float


class DriverActionRequest(CamelModel):
    emergency_id: str
    action: DriverAction


class AcceptCaseResponse(CamelModel):
    emergency_id: str
    status: EmergencyStatus
    assigned_hospital_id: Optional[str] = None
    assigned_driver_id: Optional[str] = None
    accepted_at: Optional[datetime] = None


__all__ = [
    "ACTIVE_DRIVER_STATUSES",
    "AcceptCaseResponse",
    "DispatchOutcome",
    "DriverAction",
    "DriverActionRequest",
    "DriverLocationRequest",
    "Emergency",
    "EmergencyStatus",
    "NavigationPhase",
    "PatientLocation",
    "PatientLocationResponse",
    "Priority",
    "SeverityAssessment",
    "TriggerEmergencyRequest",
    "TriggerEmergencyResponse",
    "TriggerLocation",
    "UpdatePatientLocationRequest",
]
