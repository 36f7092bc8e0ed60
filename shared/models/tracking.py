"""Read models served to polling dashboards."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from .base import CamelModel, GeoPoint
from .documents import DocumentView
from .emergency import Emergency, EmergencyStatus, NavigationPhase, PatientLocation, Priority
from .users import BedCounts, DriverSummary, HospitalSummary, PatientSummary


class TrackingView(CamelModel):
    emergency_id: str
    status: EmergencyStatus
    navigation_phase: NavigationPhase
    patient_location: PatientLocation
    ambulance_location: Optional[GeoPoint] = None
    hospital: Optional[HospitalSummary] = None
    driver: Optional[DriverSummary] = None
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = None
    driver_last_location_update: Optional[datetime] = None
    severity_score: int
    priority: Priority
    triggered_at: datetime
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    stale: bool = False


class DriverAssignment(CamelModel):
    emergency: Emergency
    patient: Optional[PatientSummary] = None
    hospital: Optional[HospitalSummary] = None
    stale: bool = False


class LocationReport(CamelModel):
    """Numbers computed for one driver position report."""

    emergency_id: str
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = None
    nearing_target: bool
    status: EmergencyStatus
    target: Literal["patient", "hospital"]
    persisted: bool


class FeedItem(CamelModel):
    emergency: Emergency
    patient: Optional[PatientSummary] = None
    documents: list[DocumentView] = Field(default_factory=list)


class FeedPage(CamelModel):
    items: list[FeedItem] = Field(default_factory=list)
    total: int
    limit: int
    offset: int
    page: int
    pages: int
    stale: bool = False


class BedCountsResponse(CamelModel):
    hospital_id: str
    bed_counts: Optional[BedCounts] = Field(default=None, description="null means never reported")


__all__ = [
    "BedCountsResponse",
    "DriverAssignment",
    "FeedItem",
    "FeedPage",
    "LocationReport",
    "TrackingView",
]
