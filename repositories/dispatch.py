"""Storage contract for users, emergencies and documents, plus an in-memory store."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Iterable, Mapping, Protocol, Sequence

from shared.models.base import GeoPoint
from shared.models.documents import MedicalDocument
from shared.models.emergency import Emergency, EmergencyStatus
from shared.models.users import BedCounts, DriverUser, HospitalUser, User

__all__ = [
    "DispatchRepository",
    "DuplicateUserError",
    "InMemoryDispatchRepository",
    "RepositoryError",
]


class RepositoryError(RuntimeError):
    """Raised when the backing store cannot complete an operation."""


class DuplicateUserError(RepositoryError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User '{user_id}' is already registered.")
        self.user_id = user_id


class DispatchRepository(Protocol):
    """Key and range queries the dispatch core needs from its store.

    Updates touch only the named fields so concurrent writers on different
    fields of one emergency do not overwrite each other.
    """

    async def add_user(self, user: User) -> User: ...

    async def get_user(self, user_id: str) -> User | None: ...

    async def list_active_hospitals(self) -> list[HospitalUser]:
        """Active hospitals in registration order."""
        ...

    async def list_active_drivers(self, license_number: str) -> list[DriverUser]: ...

    async def update_user_location(self, user_id: str, location: GeoPoint, address: str | None) -> User | None: ...

    async def update_bed_counts(self, hospital_id: str, counts: BedCounts) -> HospitalUser | None: ...

    async def add_emergency(self, emergency: Emergency) -> Emergency: ...

    async def get_emergency(self, emergency_id: str) -> Emergency | None: ...

    async def update_emergency(self, emergency_id: str, changes: Mapping[str, Any]) -> Emergency | None: ...

    async def list_hospital_emergencies(
        self, hospital_id: str, status: EmergencyStatus | None = None
    ) -> list[Emergency]:
        """Emergencies assigned to ``hospital_id``, newest ``triggered_at`` first."""
        ...

    async def list_driver_emergencies(
        self, driver_id: str, statuses: Sequence[EmergencyStatus]
    ) -> list[Emergency]:
        """Emergencies assigned to ``driver_id``, newest ``triggered_at`` first."""
        ...

    async def add_document(self, document: MedicalDocument) -> MedicalDocument: ...

    async def get_document(self, document_id: str) -> MedicalDocument | None: ...

    async def delete_document(self, document_id: str) -> bool: ...

    async def list_documents(self, emergency_ids: Iterable[str]) -> dict[str, list[MedicalDocument]]:
        """Documents grouped by emergency id, oldest first; every requested id is a key."""
        ...

    async def list_expired_documents(self, now: datetime, limit: int) -> list[MedicalDocument]: ...

    async def dispose(self) -> None: ...


class InMemoryDispatchRepository:
    """Process-local store used by default and in tests.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(
        self,
        *,
        users: Iterable[User] | None = None,
        emergencies: Iterable[Emergency] | None = None,
        documents: Iterable[MedicalDocument] | None = None,
    ) -> None:
        self._lock = asyncio.Lock()
        self._users: dict[str, User] = {user.id: user.model_copy(deep=True) for user in users or ()}
        self._emergencies: dict[str, Emergency] = {
            item.id: item.model_copy(deep=True) for item in emergencies or ()
        }
        self._documents: dict[str, MedicalDocument] = {
            doc.id: doc.model_copy(deep=True) for doc in documents or ()
        }

    async def add_user(self, user: User) -> User:
        async with self._lock:
            if user.id in self._users:
                raise DuplicateUserError(user.id)
            self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def get_user(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user is not None else None

    async def list_active_hospitals(self) -> list[HospitalUser]:
        hospitals = [
            user
            for user in self._users.values()
            if isinstance(user, HospitalUser) and user.is_active
        ]
        hospitals.sort(key=lambda item: item.created_at)
        return [item.model_copy(deep=True) for item in hospitals]

    async def list_active_drivers(self, license_number: str) -> list[DriverUser]:
        return [
            user.model_copy(deep=True)
            for user in self._users.values()
            if isinstance(user, DriverUser)
            and user.is_active
            and user.linked_hospital_license == license_number
        ]

    async def update_user_location(self, user_id: str, location: GeoPoint, address: str | None) -> User | None:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            changes: dict[str, Any] = {"location": location}
            if address is not None:
                changes["address"] = address
            updated = user.model_copy(update=changes)
            self._users[user_id] = updated
        return updated.model_copy(deep=True)

    async def update_bed_counts(self, hospital_id: str, counts: BedCounts) -> HospitalUser | None:
        async with self._lock:
            user = self._users.get(hospital_id)
            if not isinstance(user, HospitalUser):
                return None
            updated = user.model_copy(update={"bed_counts": counts})
            self._users[hospital_id] = updated
        return updated.model_copy(deep=True)

    async def add_emergency(self, emergency: Emergency) -> Emergency:
        async with self._lock:
            self._emergencies[emergency.id] = emergency.model_copy(deep=True)
        return emergency.model_copy(deep=True)

    async def get_emergency(self, emergency_id: str) -> Emergency | None:
        emergency = self._emergencies.get(emergency_id)
        return emergency.model_copy(deep=True) if emergency is not None else None

    async def update_emergency(self, emergency_id: str, changes: Mapping[str, Any]) -> Emergency | None:
        async with self._lock:
            current = self._emergencies.get(emergency_id)
            if current is None:
                return None
            updated = current.model_copy(update=dict(changes), deep=True)
            self._emergencies[emergency_id] = updated
        return updated.model_copy(deep=True)

    async def list_hospital_emergencies(
        self, hospital_id: str, status: EmergencyStatus | None = None
    ) -> list[Emergency]:
        matches = [
            item
            for item in self._emergencies.values()
            if item.assigned_hospital_id == hospital_id and (status is None or item.status is status)
        ]
        matches.sort(key=lambda item: item.triggered_at, reverse=True)
        return [item.model_copy(deep=True) for item in matches]

    async def list_driver_emergencies(
        self, driver_id: str, statuses: Sequence[EmergencyStatus]
    ) -> list[Emergency]:
        wanted = set(statuses)
        matches = [
            item
            for item in self._emergencies.values()
            if item.assigned_driver_id == driver_id and item.status in wanted
        ]
        matches.sort(key=lambda item: item.triggered_at, reverse=True)
        return [item.model_copy(deep=True) for item in matches]

    async def add_document(self, document: MedicalDocument) -> MedicalDocument:
        async with self._lock:
            self._documents[document.id] = document.model_copy(deep=True)
        return document.model_copy(deep=True)

    async def get_document(self, document_id: str) -> MedicalDocument | None:
        document = self._documents.get(document_id)
        return document.model_copy(deep=True) if document is not None else None

    async def delete_document(self, document_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(document_id, None) is not None

    async def list_documents(self, emergency_ids: Iterable[str]) -> dict[str, list[MedicalDocument]]:
        grouped: dict[str, list[MedicalDocument]] = {emergency_id: [] for emergency_id in emergency_ids}
        for document in self._documents.values():
            bucket = grouped.get(document.emergency_id)
            if bucket is not None:
                bucket.append(document.model_copy(deep=True))
        for bucket in grouped.values():
            bucket.sort(key=lambda item: item.created_at)
        return grouped

    async def list_expired_documents(self, now: datetime, limit: int) -> list[MedicalDocument]:
        expired = [doc for doc in self._documents.values() if doc.expires_at <= now]
        expired.sort(key=lambda item: item.expires_at)
        return [doc.model_copy(deep=True) for doc in expired[:limit]]

    async def dispose(self) -> None:
        return None
