"""SQLAlchemy (async) implementation of :class:`DispatchRepository`."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from shared.models.base import GeoPoint, ensure_utc
from shared.models.documents import MedicalDocument
from shared.models.emergency import Emergency, EmergencyStatus
from shared.models.users import USER_ADAPTER, BedCounts, DriverUser, HospitalUser, User

from .dispatch import DuplicateUserError, RepositoryError

__all__ = ["SCHEMA_STATEMENTS", "SQLDispatchRepository"]

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS dispatch_users (
        id VARCHAR(64) PRIMARY KEY,
        role VARCHAR(16) NOT NULL,
        is_active INTEGER NOT NULL,
        license VARCHAR(128),
        created_at VARCHAR(40) NOT NULL,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dispatch_emergencies (
        id VARCHAR(64) PRIMARY KEY,
        patient_id VARCHAR(64) NOT NULL,
        status VARCHAR(16) NOT NULL,
        lat DOUBLE PRECISION NOT NULL,
        lng DOUBLE PRECISION NOT NULL,
        address TEXT,
        symptoms TEXT,
        severity_score INTEGER NOT NULL,
        priority VARCHAR(16) NOT NULL,
        ai_assessment TEXT,
        assigned_hospital_id VARCHAR(64),
        assigned_driver_id VARCHAR(64),
        navigation_phase VARCHAR(16) NOT NULL,
        dispatch_outcome VARCHAR(32),
        driver_lat DOUBLE PRECISION,
        driver_lng DOUBLE PRECISION,
        driver_last_location_update VARCHAR(40),
        distance_km DOUBLE PRECISION,
        eta_minutes INTEGER,
        triggered_at VARCHAR(40) NOT NULL,
        accepted_at VARCHAR(40),
        arrived_at VARCHAR(40),
        completed_at VARCHAR(40)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_emergencies_hospital ON dispatch_emergencies (assigned_hospital_id)",
    "CREATE INDEX IF NOT EXISTS ix_emergencies_driver ON dispatch_emergencies (assigned_driver_id)",
    """
    CREATE TABLE IF NOT EXISTS dispatch_documents (
        id VARCHAR(64) PRIMARY KEY,
        emergency_id VARCHAR(64) NOT NULL,
        type VARCHAR(16) NOT NULL,
        blob_key VARCHAR(255) NOT NULL,
        filename VARCHAR(255) NOT NULL,
        content_type VARCHAR(64) NOT NULL,
        size_bytes INTEGER NOT NULL,
        uploaded_by VARCHAR(64) NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        expires_at VARCHAR(40) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_documents_emergency ON dispatch_documents (emergency_id)",
    "CREATE INDEX IF NOT EXISTS ix_documents_expires ON dispatch_documents (expires_at)",
)

_EMERGENCY_COLUMNS: tuple[str, ...] = (
    "id",
    "patient_id",
    "status",
    "lat",
    "lng",
    "address",
    "symptoms",
    "severity_score",
    "priority",
    "ai_assessment",
    "assigned_hospital_id",
    "assigned_driver_id",
    "navigation_phase",
    "dispatch_outcome",
    "driver_lat",
    "driver_lng",
    "driver_last_location_update",
    "distance_km",
    "eta_minutes",
    "triggered_at",
    "accepted_at",
    "arrived_at",
    "completed_at",
)

_DOCUMENT_COLUMNS: tuple[str, ...] = (
    "id",
    "emergency_id",
    "type",
    "blob_key",
    "filename",
    "content_type",
    "size_bytes",
    "uploaded_by",
    "created_at",
    "expires_at",
)


def _timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO string; lexical order equals chronological order."""

    normalized = ensure_utc(value)
    assert normalized is not None
    return normalized.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _timestamp(value)
    return value


def _emergency_columns(changes: Mapping[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for field, value in changes.items():
        if field == "location":
            location = value if isinstance(value, GeoPoint) else GeoPoint.model_validate(value)
            columns["lat"] = location.lat
            columns["lng"] = location.lng
            columns["address"] = getattr(location, "address", None)
            continue
        if field not in _EMERGENCY_COLUMNS:
            raise ValueError(f"Unknown emergency field '{field}'")
        columns[field] = _scalar(value)
    return columns


def _row_to_emergency(row: Mapping[str, Any]) -> Emergency:
    data = {column: row[column] for column in _EMERGENCY_COLUMNS if column not in {"lat", "lng", "address"}}
    data["location"] = {"lat": row["lat"], "lng": row["lng"], "address": row["address"]}
    return Emergency.model_validate(data)


def _row_to_document(row: Mapping[str, Any]) -> MedicalDocument:
    return MedicalDocument.model_validate({column: row[column] for column in _DOCUMENT_COLUMNS})


def _user_license(user: User) -> str | None:
    if isinstance(user, HospitalUser):
        return user.license_number
    if isinstance(user, DriverUser):
        return user.linked_hospital_license
    return None


class SQLDispatchRepository:
    """Relational store reached through an async SQLAlchemy engine.

    Timestamps are stored as fixed-width UTC strings so range predicates work
    the same on SQLite and PostgreSQL.
    """

    def __init__(
        self,
        database_url: str,
        *,
        engine: AsyncEngine | None = None,
        echo: bool = False,
    ) -> None:
        self._engine: AsyncEngine = engine or create_async_engine(database_url, echo=echo)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Provide a transactional connection scope."""

        try:
            async with self._engine.begin() as connection:
                yield connection
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise RepositoryError(str(exc)) from exc

    async def create_schema(self) -> None:
        async with self.transaction() as connection:
            for statement in SCHEMA_STATEMENTS:
                await connection.execute(text(statement))

    async def dispose(self) -> None:
        """Dispose of the underlying engine."""

        await self._engine.dispose()

    async def add_user(self, user: User) -> User:
        params = {
            "id": user.id,
            "role": _scalar(user.role),
            "is_active": 1 if user.is_active else 0,
            "license": _user_license(user),
            "created_at": _timestamp(user.created_at),
            "payload": user.model_dump_json(),
        }
        try:
            async with self.transaction() as connection:
                await connection.execute(
                    text(
                        "INSERT INTO dispatch_users (id, role, is_active, license, created_at, payload) "
                        "VALUES (:id, :role, :is_active, :license, :created_at, :payload)"
                    ),
                    params,
                )
        except IntegrityError as exc:
            raise DuplicateUserError(user.id) from exc
        return user

    async def get_user(self, user_id: str) -> User | None:
        async with self.transaction() as connection:
            result = await connection.execute(
                text("SELECT payload FROM dispatch_users WHERE id = :id"), {"id": user_id}
            )
            payload = result.scalar_one_or_none()
        return USER_ADAPTER.validate_json(payload) if payload is not None else None

    async def list_active_hospitals(self) -> list[HospitalUser]:
        async with self.transaction() as connection:
            result = await connection.execute(
                text(
                    "SELECT payload FROM dispatch_users WHERE role = 'hospital' AND is_active = 1 "
                    "ORDER BY created_at ASC, id ASC"
                )
            )
            payloads = list(result.scalars())
        return [HospitalUser.model_validate_json(payload) for payload in payloads]

    async def list_active_drivers(self, license_number: str) -> list[DriverUser]:
        async with self.transaction() as connection:
            result = await connection.execute(
                text(
                    "SELECT payload FROM dispatch_users WHERE role = 'driver' AND is_active = 1 "
                    "AND license = :license"
                ),
                {"license": license_number},
            )
            payloads = list(result.scalars())
        return [DriverUser.model_validate_json(payload) for payload in payloads]

    async def _rewrite_user(self, user_id: str, changes: Mapping[str, Any]) -> User | None:
        async with self.transaction() as connection:
            result = await connection.execute(
                text("SELECT payload FROM dispatch_users WHERE id = :id"), {"id": user_id}
            )
            payload = result.scalar_one_or_none()
            if payload is None:
                return None
            user = USER_ADAPTER.validate_json(payload).model_copy(update=dict(changes))
            await connection.execute(
                text("UPDATE dispatch_users SET payload = :payload WHERE id = :id"),
                {"id": user_id, "payload": user.model_dump_json()},
            )
        return user

    async def update_user_location(self, user_id: str, location: GeoPoint, address: str | None) -> User | None:
        changes: dict[str, Any] = {"location": location}
        if address is not None:
            changes["address"] = address
        return await self._rewrite_user(user_id, changes)

    async def update_bed_counts(self, hospital_id: str, counts: BedCounts) -> HospitalUser | None:
        user = await self.get_user(hospital_id)
        if not isinstance(user, HospitalUser):
            return None
        updated = await self._rewrite_user(hospital_id, {"bed_counts": counts})
        return updated if isinstance(updated, HospitalUser) else None

    async def add_emergency(self, emergency: Emergency) -> Emergency:
        row = _emergency_columns({field: getattr(emergency, field) for field in Emergency.model_fields})
        columns = ", ".join(row)
        values = ", ".join(f":{column}" for column in row)
        async with self.transaction() as connection:
            await connection.execute(
                text(f"INSERT INTO dispatch_emergencies ({columns}) VALUES ({values})"), row
            )
        return emergency

    async def get_emergency(self, emergency_id: str) -> Emergency | None:
        async with self.transaction() as connection:
            result = await connection.execute(
                text("SELECT * FROM dispatch_emergencies WHERE id = :id"), {"id": emergency_id}
            )
            row = result.mappings().first()
        return _row_to_emergency(row) if row is not None else None

    async def update_emergency(self, emergency_id: str, changes: Mapping[str, Any]) -> Emergency | None:
        columns = _emergency_columns(changes)
        columns.pop("id", None)
        async with self.transaction() as connection:
            if columns:
                assignments = ", ".join(f"{column} = :{column}" for column in columns)
                await connection.execute(
                    text(f"UPDATE dispatch_emergencies SET {assignments} WHERE id = :id"),
                    {**columns, "id": emergency_id},
                )
            result = await connection.execute(
                text("SELECT * FROM dispatch_emergencies WHERE id = :id"), {"id": emergency_id}
            )
            row = result.mappings().first()
        return _row_to_emergency(row) if row is not None else None

    async def list_hospital_emergencies(
        self, hospital_id: str, status: EmergencyStatus | None = None
    ) -> list[Emergency]:
        sql = "SELECT * FROM dispatch_emergencies WHERE assigned_hospital_id = :hospital_id"
        params: dict[str, Any] = {"hospital_id": hospital_id}
        if status is not None:
            sql += " AND status = :status"
            params["status"] = status.value
        sql += " ORDER BY triggered_at DESC"
        async with self.transaction() as connection:
            result = await connection.execute(text(sql), params)
            rows = list(result.mappings())
        return [_row_to_emergency(row) for row in rows]

    async def list_driver_emergencies(
        self, driver_id: str, statuses: Sequence[EmergencyStatus]
    ) -> list[Emergency]:
        if not statuses:
            return []
        statement = text(
            "SELECT * FROM dispatch_emergencies WHERE assigned_driver_id = :driver_id "
            "AND status IN :statuses ORDER BY triggered_at DESC"
        ).bindparams(bindparam("statuses", expanding=True))
        async with self.transaction() as connection:
            result = await connection.execute(
                statement, {"driver_id": driver_id, "statuses": [item.value for item in statuses]}
            )
            rows = list(result.mappings())
        return [_row_to_emergency(row) for row in rows]

    async def add_document(self, document: MedicalDocument) -> MedicalDocument:
        row = {column: _scalar(getattr(document, column)) for column in _DOCUMENT_COLUMNS}
        columns = ", ".join(row)
        values = ", ".join(f":{column}" for column in row)
        async with self.transaction() as connection:
            await connection.execute(text(f"INSERT INTO dispatch_documents ({columns}) VALUES ({values})"), row)
        return document

    async def get_document(self, document_id: str) -> MedicalDocument | None:
        async with self.transaction() as connection:
            result = await connection.execute(
                text("SELECT * FROM dispatch_documents WHERE id = :id"), {"id": document_id}
            )
            row = result.mappings().first()
        return _row_to_document(row) if row is not None else None

    async def delete_document(self, document_id: str) -> bool:
        async with self.transaction() as connection:
            result = await connection.execute(
                text("DELETE FROM dispatch_documents WHERE id = :id"), {"id": document_id}
            )
        return bool(result.rowcount)

    async def list_documents(self, emergency_ids: Iterable[str]) -> dict[str, list[MedicalDocument]]:
        ids = list(dict.fromkeys(emergency_ids))
        grouped: dict[str, list[MedicalDocument]] = {emergency_id: [] for emergency_id in ids}
        if not ids:
            return grouped
        statement = text(
            "SELECT * FROM dispatch_documents WHERE emergency_id IN :ids ORDER BY created_at ASC"
        ).bindparams(bindparam("ids", expanding=True))
        async with self.transaction() as connection:
            result = await connection.execute(statement, {"ids": ids})
            rows = list(result.mappings())
        for row in rows:
            grouped[row["emergency_id"]].append(_row_to_document(row))
        return grouped

    async def list_expired_documents(self, now: datetime, limit: int) -> list[MedicalDocument]:
        async with self.transaction() as connection:
            result = await connection.execute(
                text(
                    "SELECT * FROM dispatch_documents WHERE expires_at <= :now "
                    "ORDER BY expires_at ASC LIMIT :limit"
                ),
                {"now": _timestamp(now), "limit": limit},
            )
            rows = list(result.mappings())
        return [_row_to_document(row) for row in rows]
