"""Nearest-hospital then nearest-linked-ambulance selection over a candidate snapshot."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from shared.geo.georank import AVERAGE_SPEED_KMH, calculate_distance, calculate_eta
from shared.models.base import GeoPoint
from shared.models.emergency import DispatchOutcome
from shared.models.users import DriverUser, HospitalUser, is_linked

__all__ = ["MatchResult", "OUTCOME_MESSAGES", "RankedDriver", "RankedHospital", "match", "rank_drivers", "rank_hospitals"]

OUTCOME_MESSAGES: dict[DispatchOutcome, str] = {
    DispatchOutcome.DISPATCHED: "A hospital and the nearest ambulance have been assigned.",
    DispatchOutcome.HOSPITAL_ONLY_NO_DRIVER: (
        "Hospital assigned. No ambulance linked to this hospital is available right now."
    ),
    DispatchOutcome.HOSPITAL_ONLY_NO_LICENSE: (
        "Hospital assigned. The hospital has no license on file, so no linked ambulance could be searched for."
    ),
    DispatchOutcome.HOSPITAL_ONLY_UNRANKED: (
        "Hospital assigned without distance ranking because no hospital has a known location. "
        "No ambulance search was attempted."
    ),
    DispatchOutcome.NO_HOSPITALS_AVAILABLE: (
        "No hospitals are available right now. Please call your local emergency number."
    ),
}


@dataclass(frozen=True, slots=True)
class RankedHospital:
    hospital: HospitalUser
    distance_km: float | None


@dataclass(frozen=True, slots=True)
class RankedDriver:
    driver: DriverUser
    distance_km: float


@dataclass(frozen=True, slots=True)
class MatchResult:
    outcome: DispatchOutcome
    hospital: HospitalUser | None = None
    hospital_distance_km: float | None = None
    driver: DriverUser | None = None
    distance_km: float | None = None
    eta_minutes: int | None = None

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self.outcome]

    @property
    def degraded(self) -> bool:
        return self.outcome is not DispatchOutcome.DISPATCHED


def rank_hospitals(patient: GeoPoint, hospitals: Sequence[HospitalUser]) -> list[RankedHospital]:
    """Active hospitals with a location, nearest first; ties keep input order."""

    ranked = [
        RankedHospital(
            hospital=hospital,
            distance_km=calculate_distance(patient.lat, patient.lng, hospital.location.lat, hospital.location.lng),
        )
        for hospital in hospitals
        if hospital.is_active and hospital.location is not None
    ]
    # list.sort is stable, so equal rounded distances keep their input order.
    ranked.sort(key=lambda item: item.distance_km)
    return ranked


def rank_drivers(patient: GeoPoint, drivers: Sequence[DriverUser]) -> list[RankedDriver]:
    """Drivers nearest first; no location ranks last; ties break on id."""

    ranked: list[RankedDriver] = []
    for driver in drivers:
        if not driver.is_active:
            continue
        if driver.location is None:
            distance = math.inf
        else:
            distance = calculate_distance(patient.lat, patient.lng, driver.location.lat, driver.location.lng)
        ranked.append(RankedDriver(driver=driver, distance_km=distance))
    ranked.sort(key=lambda item: (item.distance_km, item.driver.id))
    return ranked


def match(
    patient: GeoPoint,
    hospitals: Sequence[HospitalUser],
    drivers: Sequence[DriverUser],
    *,
    average_speed_kmh: float = AVERAGE_SPEED_KMH,
) -> MatchResult:
    """Pick a hospital for ``patient`` and, when possible, a linked ambulance.

    ``hospitals`` is expected in registration order; it is used as the
    fallback order when no hospital has a location. ``drivers`` may contain
    ambulances of any fleet; only those linked to the chosen hospital count.
    """

    active = [hospital for hospital in hospitals if hospital.is_active]
    if not active:
        return MatchResult(outcome=DispatchOutcome.NO_HOSPITALS_AVAILABLE)

    ranked = rank_hospitals(patient, active)
    if not ranked:
        return MatchResult(outcome=DispatchOutcome.HOSPITAL_ONLY_UNRANKED, hospital=active[0])

    best = ranked[0]
    hospital = best.hospital
    if hospital.license_number is None:
        return MatchResult(
            outcome=DispatchOutcome.HOSPITAL_ONLY_NO_LICENSE,
            hospital=hospital,
            hospital_distance_km=best.distance_km,
        )

    linked = [driver for driver in drivers if is_linked(driver, hospital)]
    candidates = rank_drivers(patient, linked)
    if not candidates:
        return MatchResult(
            outcome=DispatchOutcome.HOSPITAL_ONLY_NO_DRIVER,
            hospital=hospital,
            hospital_distance_km=best.distance_km,
        )

    chosen = candidates[0]
    distance_km: float | None = None
    eta_minutes: int | None = None
    if math.isfinite(chosen.distance_km):
        distance_km = chosen.distance_km
        eta_minutes = calculate_eta(distance_km, average_speed_kmh)
    return MatchResult(
        outcome=DispatchOutcome.DISPATCHED,
        hospital=hospital,
        hospital_distance_km=best.distance_km,
        driver=chosen.driver,
        distance_km=distance_km,
        eta_minutes=eta_minutes,
    )
