"""Registered users modelled as a union tagged by ``role``."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import Field, TypeAdapter, field_validator

from .base import CamelModel, GeoPoint, utcnow


class Role(str, Enum):
    """The three actors that share an emergency."""

    PATIENT = "patient"
    HOSPITAL = "hospital"
    DRIVER = "driver"

    def __str__(self) -> str:  # pragma: no cover - trivial wrapper
        return self.value


@dataclass(frozen=True, slots=True)
class Identity:
    """A pre-verified ``{id, role}`` pair supplied by the identity provider."""

    id: str
    role: Role


def normalize_license(value: str | None) -> str | None:
    """Trim and upper-case a license string; blank values become ``None``."""

    if value is None:
        return None
    cleaned = "".join(value.split()).upper()
    return cleaned or None


class BedCounts(CamelModel):
    icu: int = Field(ge=0)
    general: int = Field(ge=0)
    emergency: int = Field(ge=0)


class _UserBase(CamelModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: Optional[str] = None
    is_active: bool = True
    location: Optional[GeoPoint] = None
    address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def identity(self) -> Identity:
        return Identity(id=self.id, role=Role(self.role))  # type: ignore[attr-defined]


class PatientUser(_UserBase):
    role: Literal["patient"] = "patient"
    blood_type: Optional[str] = None
    allergies: list[str] = Field(default_factory=list)
    medical_history: Optional[str] = None
    emergency_contact: Optional[str] = None


class HospitalUser(_UserBase):
    role: Literal["hospital"] = "hospital"
    license_number: Optional[str] = Field(default=None, description="License drivers link against")
    department: Optional[str] = None
    bed_counts: Optional[BedCounts] = Field(default=None, description="Absent until first reported")

    @field_validator("license_number", mode="before")
    @classmethod
    def _normalize_license(cls, value: str | None) -> str | None:
        return normalize_license(value)


class DriverUser(_UserBase):
    role: Literal["driver"] = "driver"
    linked_hospital_license: str = Field(description="License of the hospital this ambulance serves")
    vehicle_type: Optional[str] = None
    vehicle_plate: Optional[str] = None
    vehicle_capacity: Optional[int] = Field(default=None, ge=0)

    @field_validator("linked_hospital_license", mode="before")
    @classmethod
    def _normalize_license(cls, value: str | None) -> str:
        normalized = normalize_license(value)
        if normalized is None:
            raise ValueError("linkedHospitalLicense must not be blank")
        return normalized


User = Annotated[Union[PatientUser, HospitalUser, DriverUser], Field(discriminator="role")]

USER_ADAPTER: TypeAdapter[User] = TypeAdapter(User)


def is_linked(driver: DriverUser, hospital: HospitalUser) -> bool:
    """True when the ambulance belongs to the hospital's fleet."""

    if hospital.license_number is None:
        return False
    return driver.linked_hospital_license == hospital.license_number


class PatientSummary(CamelModel):
    id: str
    name: str
    phone: str
    blood_type: Optional[str] = None
    allergies: list[str] = Field(default_factory=list)
    medical_history: Optional[str] = None
    emergency_contact: Optional[str] = None

    @classmethod
    def from_user(cls, user: PatientUser) -> "PatientSummary":
        return cls(
            id=user.id,
            name=user.name,
            phone=user.phone,
            blood_type=user.blood_type,
            allergies=list(user.allergies),
            medical_history=user.medical_history,
            emergency_contact=user.emergency_contact,
        )


class HospitalSummary(CamelModel):
    id: str
    name: str
    phone: str
    address: Optional[str] = None
    location: Optional[GeoPoint] = None
    license_number: Optional[str] = None
    distance_km: Optional[float] = None

    @classmethod
    def from_user(cls, user: HospitalUser, *, distance_km: float | None = None) -> "HospitalSummary":
        return cls(
            id=user.id,
            name=user.name,
            phone=user.phone,
            address=user.address,
            location=user.location,
            license_number=user.license_number,
            distance_km=distance_km,
        )


class DriverSummary(CamelModel):
    id: str
    name: str
    phone: str
    vehicle_type: Optional[str] = None
    vehicle_plate: Optional[str] = None
    location: Optional[GeoPoint] = None

    @classmethod
    def from_user(cls, user: DriverUser) -> "DriverSummary":
        return cls(
            id=user.id,
            name=user.name,
            phone=user.phone,
            vehicle_type=user.vehicle_type,
            vehicle_plate=user.vehicle_plate,
            location=user.location,
        )


class UpdateLocationRequest(CamelModel):
    lat: float
    lng: float
    address: Optional[str] = None


__all__ = [
    "USER_ADAPTER",
    "BedCounts",
    "DriverSummary",
    "DriverUser",
    "HospitalSummary",
    "HospitalUser",
    "Identity",
    "PatientSummary",
    "PatientUser",
    "Role",
    "UpdateLocationRequest",
    "User",
    "is_linked",
    "normalize_license",
]
