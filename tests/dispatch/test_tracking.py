from __future__ import annotations

from typing import Sequence

import pytest

from repositories.dispatch import InMemoryDispatchRepository, RepositoryError
from services.dispatch.tracking import TrackingService, can_access
from shared.cache.expiring import ExpiringCache
from shared.http.errors import AccessDeniedError, ResourceNotFoundError, StorageUnavailableError
from shared.models.emergency import Emergency, EmergencyStatus, PatientLocation
from shared.models.users import Identity, Role

PATIENT = Identity(id="p1", role=Role.PATIENT)
HOSPITAL = Identity(id="h1", role=Role.HOSPITAL)
DRIVER = Identity(id="d1", role=Role.DRIVER)


class _SwitchableRepository(InMemoryDispatchRepository):
    """Raises on reads once ``failing`` is set."""

    failing = False
    reads = 0

    async def get_emergency(self, emergency_id: str) -> Emergency | None:
        self.reads += 1
        if self.failing:
            raise RepositoryError("connection reset")
        return await super().get_emergency(emergency_id)

    async def list_driver_emergencies(
        self, driver_id: str, statuses: Sequence[EmergencyStatus]
    ) -> list[Emergency]:
        if self.failing:
            raise RepositoryError("connection reset")
        return await super().list_driver_emergencies(driver_id, statuses)


def _emergency(**overrides) -> Emergency:
    data = {
        "id": "e1",
        "patient_id": "p1",
        "location": PatientLocation(lat=28.60, lng=77.20),
        "status": EmergencyStatus.ASSIGNED,
        "assigned_hospital_id": "h1",
        "assigned_driver_id": "d1",
        "driver_lat": 28.62,
        "driver_lng": 77.22,
        "distance_km": 3.0,
        "eta_minutes": 3,
    }
    data.update(overrides)
    return Emergency(**data)


@pytest.fixture
def switchable(make_patient, make_hospital, make_driver) -> _SwitchableRepository:
    return _SwitchableRepository(
        users=[make_patient(), make_hospital(), make_driver()],
        emergencies=[_emergency()],
    )


def _service(repository, monotonic) -> TrackingService:
    return TrackingService(
        repository,
        tracking_cache=ExpiringCache(clock=monotonic),
        assignment_cache=ExpiringCache(clock=monotonic),
    )


@pytest.mark.parametrize(
    ("identity", "allowed"),
    [
        (PATIENT, True),
        (HOSPITAL, True),
        (DRIVER, True),
        (Identity(id="p2", role=Role.PATIENT), False),
        (Identity(id="p1", role=Role.HOSPITAL), False),
        (Identity(id="h1", role=Role.DRIVER), False),
    ],
)
def test_access_predicate(identity, allowed) -> None:
    assert can_access(_emergency(), identity) is allowed


@pytest.mark.anyio("asyncio")
async def test_tracking_view_carries_parties_and_ambulance(switchable, monotonic) -> None:
    view = await _service(switchable, monotonic).get_tracking("e1", PATIENT)

    assert view.status is EmergencyStatus.ASSIGNED
    assert view.hospital is not None and view.hospital.id == "h1"
    assert view.driver is not None and view.driver.vehicle_plate == "DL-01-AB-1234"
    assert view.ambulance_location is not None and view.ambulance_location.lat == 28.62
    assert view.eta_minutes == 3
    assert view.stale is False


@pytest.mark.anyio("asyncio")
async def test_repeated_polls_inside_ttl_hit_the_cache(switchable, monotonic) -> None:
    service = _service(switchable, monotonic)

    await service.get_tracking("e1", PATIENT)
    await service.get_tracking("e1", PATIENT)
    assert switchable.reads == 1

    monotonic.advance(2.5)
    await service.get_tracking("e1", PATIENT)
    assert switchable.reads == 2


@pytest.mark.anyio("asyncio")
async def test_injected_empty_caches_are_used(switchable, monotonic) -> None:
    tracking_cache: ExpiringCache = ExpiringCache(clock=monotonic)
    assignment_cache: ExpiringCache = ExpiringCache(clock=monotonic)
    service = TrackingService(switchable, tracking_cache=tracking_cache, assignment_cache=assignment_cache)

    await service.get_tracking("e1", PATIENT)
    await service.get_driver_assignment("d1")

    assert len(tracking_cache) == 1
    assert len(assignment_cache) == 1


@pytest.mark.anyio("asyncio")
async def test_cache_is_keyed_per_requester(switchable, monotonic) -> None:
    service = _service(switchable, monotonic)

    await service.get_tracking("e1", PATIENT)
    with pytest.raises(AccessDeniedError):
        await service.get_tracking("e1", Identity(id="p2", role=Role.PATIENT))


@pytest.mark.anyio("asyncio")
async def test_storage_failure_serves_recent_entry_as_stale(switchable, monotonic) -> None:
    service = _service(switchable, monotonic)
    await service.get_tracking("e1", HOSPITAL)

    switchable.failing = True
    monotonic.advance(10)
    view = await service.get_tracking("e1", HOSPITAL)

    assert view.stale is True
    assert view.emergency_id == "e1"


@pytest.mark.anyio("asyncio")
async def test_storage_failure_without_recent_entry_is_unavailable(switchable, monotonic) -> None:
    service = _service(switchable, monotonic)
    await service.get_tracking("e1", HOSPITAL)

    switchable.failing = True
    monotonic.advance(31)
    with pytest.raises(StorageUnavailableError):
        await service.get_tracking("e1", HOSPITAL)


@pytest.mark.anyio("asyncio")
async def test_unknown_emergency_is_not_found(switchable, monotonic) -> None:
    with pytest.raises(ResourceNotFoundError):
        await _service(switchable, monotonic).get_tracking("missing", PATIENT)


@pytest.mark.anyio("asyncio")
async def test_driver_assignment_picks_latest_active_case_of_own_fleet(
    make_patient, make_hospital, make_driver, clock, monotonic
) -> None:
    older = _emergency(id="e-old", triggered_at=clock.now)
    newer = _emergency(id="e-new", triggered_at=clock.advance(minutes=5), status=EmergencyStatus.EN_ROUTE)
    foreign = _emergency(
        id="e-foreign", triggered_at=clock.advance(minutes=5), assigned_hospital_id="h2"
    )
    finished = _emergency(id="e-done", triggered_at=clock.advance(minutes=5), status=EmergencyStatus.COMPLETED)
    repository = InMemoryDispatchRepository(
        users=[make_patient(), make_hospital(), make_hospital("h2", license_number="H2"), make_driver()],
        emergencies=[older, newer, foreign, finished],
    )

    assignment = await _service(repository, monotonic).get_driver_assignment("d1")

    assert assignment is not None
    assert assignment.emergency.id == "e-new"
    assert assignment.patient is not None and assignment.patient.id == "p1"
    assert assignment.hospital is not None and assignment.hospital.id == "h1"


@pytest.mark.anyio("asyncio")
async def test_driver_without_cases_has_no_assignment(make_driver, monotonic) -> None:
    repository = InMemoryDispatchRepository(users=[make_driver()])

    assert await _service(repository, monotonic).get_driver_assignment("d1") is None


@pytest.mark.anyio("asyncio")
async def test_assignment_served_stale_when_storage_fails(switchable, monotonic) -> None:
    service = _service(switchable, monotonic)
    await service.get_driver_assignment("d1")

    switchable.failing = True
    monotonic.advance(5)
    assignment = await service.get_driver_assignment("d1")

    assert assignment is not None
    assert assignment.stale is True
