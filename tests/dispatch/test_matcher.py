from __future__ import annotations

import math
from itertools import permutations

from services.dispatch.matcher import match, rank_drivers, rank_hospitals
from shared.models.base import GeoPoint
from shared.models.emergency import DispatchOutcome

PATIENT = GeoPoint(lat=28.60, lng=77.20)


def test_dispatches_nearest_hospital_and_linked_driver(make_hospital, make_driver) -> None:
    result = match(PATIENT, [make_hospital()], [make_driver()])

    assert result.outcome is DispatchOutcome.DISPATCHED
    assert result.hospital is not None and result.hospital.id == "h1"
    assert result.driver is not None and result.driver.id == "d1"
    assert result.distance_km == 3.0
    assert result.eta_minutes == 3
    assert result.hospital_distance_km == 1.5
    assert not result.degraded


def test_hospital_at_the_patient_wins_for_every_input_order(make_hospital, make_driver) -> None:
    hospitals = [
        make_hospital("h-far", lat=28.70, lng=77.30),
        make_hospital("h-here", lat=PATIENT.lat, lng=PATIENT.lng),
        make_hospital("h-near", lat=28.61, lng=77.21),
        make_hospital("h-unlocated", lat=None, lng=None),
    ]

    for ordering in permutations(hospitals):
        result = match(PATIENT, list(ordering), [make_driver()])

        assert result.hospital is not None and result.hospital.id == "h-here"
        assert result.hospital_distance_km == 0.0


def test_equal_rounded_distances_keep_registration_order(make_hospital) -> None:
    first = make_hospital("h-first", lat=28.61, lng=77.20)
    second = make_hospital("h-second", lat=28.59, lng=77.20)

    ranked = rank_hospitals(PATIENT, [first, second])

    assert [item.hospital.id for item in ranked] == ["h-first", "h-second"]
    assert ranked[0].distance_km == ranked[1].distance_km


def test_drivers_without_location_rank_last_and_ties_break_on_id(make_driver) -> None:
    drivers = [
        make_driver("d-none", lat=None, lng=None),
        make_driver("d-b", lat=28.61, lng=77.20),
        make_driver("d-a", lat=28.59, lng=77.20),
    ]

    ranked = rank_drivers(PATIENT, drivers)

    assert [item.driver.id for item in ranked] == ["d-a", "d-b", "d-none"]
    assert math.isinf(ranked[-1].distance_km)


def test_driver_without_location_is_dispatched_with_unknown_eta(make_hospital, make_driver) -> None:
    result = match(PATIENT, [make_hospital()], [make_driver(lat=None, lng=None)])

    assert result.outcome is DispatchOutcome.DISPATCHED
    assert result.distance_km is None
    assert result.eta_minutes is None


def test_drivers_of_other_fleets_are_ignored(make_hospital, make_driver) -> None:
    outsider = make_driver("d-other", linked_hospital_license="OTHER")

    result = match(PATIENT, [make_hospital()], [outsider])

    assert result.outcome is DispatchOutcome.HOSPITAL_ONLY_NO_DRIVER
    assert result.driver is None
    assert result.degraded


def test_nearest_hospital_without_license_skips_ambulance_search(make_hospital, make_driver) -> None:
    unlicensed = make_hospital("h-near", lat=28.601, lng=77.201, license_number=None)
    licensed = make_hospital("h-far", lat=28.70, lng=77.30)

    result = match(PATIENT, [licensed, unlicensed], [make_driver()])

    assert result.outcome is DispatchOutcome.HOSPITAL_ONLY_NO_LICENSE
    assert result.hospital is not None and result.hospital.id == "h-near"
    assert result.driver is None


def test_unlocated_hospitals_fall_back_to_first_registered(make_hospital, make_driver) -> None:
    hospitals = [make_hospital("h-a", lat=None, lng=None), make_hospital("h-b", lat=None, lng=None)]

    result = match(PATIENT, hospitals, [make_driver()])

    assert result.outcome is DispatchOutcome.HOSPITAL_ONLY_UNRANKED
    assert result.hospital is not None and result.hospital.id == "h-a"
    assert result.driver is None


def test_no_active_hospitals_is_a_hard_failure(make_hospital) -> None:
    result = match(PATIENT, [make_hospital(is_active=False)], [])

    assert result.outcome is DispatchOutcome.NO_HOSPITALS_AVAILABLE
    assert result.hospital is None
    assert "emergency number" in result.message


def test_inactive_drivers_are_not_dispatched(make_hospital, make_driver) -> None:
    result = match(PATIENT, [make_hospital()], [make_driver(is_active=False)])

    assert result.outcome is DispatchOutcome.HOSPITAL_ONLY_NO_DRIVER
