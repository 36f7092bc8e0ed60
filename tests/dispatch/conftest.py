from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

import pytest

from repositories.dispatch import InMemoryDispatchRepository
from shared.models.base import GeoPoint
from shared.models.users import DriverUser, HospitalUser, PatientUser
from shared.observability.audit import InMemoryAuditRepository, set_audit_repository

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable wall clock for deterministic expiry and throttle checks."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeMonotonic:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def make_patient(user_id: str = "p1", **overrides: Any) -> PatientUser:
    data: dict[str, Any] = {"id": user_id, "name": "Asha Patient", "phone": "+91-555-0100"}
    data.update(overrides)
    return PatientUser(**data)


def make_hospital(
    user_id: str = "h1", *, lat: float | None = 28.61, lng: float | None = 77.21, **overrides: Any
) -> HospitalUser:
    data: dict[str, Any] = {
        "id": user_id,
        "name": f"Hospital {user_id}",
        "phone": "+91-555-0200",
        "license_number": "H1",
        "location": GeoPoint(lat=lat, lng=lng) if lat is not None and lng is not None else None,
    }
    data.update(overrides)
    return HospitalUser(**data)


def make_driver(
    user_id: str = "d1", *, lat: float | None = 28.62, lng: float | None = 77.22, **overrides: Any
) -> DriverUser:
    data: dict[str, Any] = {
        "id": user_id,
        "name": f"Driver {user_id}",
        "phone": "+91-555-0300",
        "linked_hospital_license": "H1",
        "vehicle_plate": "DL-01-AB-1234",
        "location": GeoPoint(lat=lat, lng=lng) if lat is not None and lng is not None else None,
    }
    data.update(overrides)
    return DriverUser(**data)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def audit_log() -> Iterator[InMemoryAuditRepository]:
    repository = InMemoryAuditRepository()
    set_audit_repository(repository)
    yield repository
    set_audit_repository(None)


@pytest.fixture
def repository() -> InMemoryDispatchRepository:
    return InMemoryDispatchRepository(users=[make_patient(), make_hospital(), make_driver()])


@pytest.fixture(name="make_patient")
def make_patient_fixture():
    return make_patient


@pytest.fixture(name="make_hospital")
def make_hospital_fixture():
    return make_hospital


@pytest.fixture(name="make_driver")
def make_driver_fixture():
    return make_driver


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()
