"""Base model and helpers shared by all dispatch payloads."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from shared.geo.georank import is_valid_coordinate


def to_camel(value: str) -> str:
    """Convert ``snake_case`` ``value`` into ``camelCase`` for JSON aliases."""

    first, *rest = value.split("_")
    return first + "".join(token.capitalize() for token in rest)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Base model applying camelCase aliases and ignoring unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class GeoPoint(CamelModel):
    """A validated latitude/longitude pair."""

    lat: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    lng: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)

    @classmethod
    def maybe(cls, lat: float | None, lng: float | None) -> "GeoPoint | None":
        """Return a point when both coordinates are present and valid."""

        if lat is None or lng is None or not is_valid_coordinate(lat, lng):
            return None
        return cls(lat=lat, lng=lng)


__all__ = ["CamelModel", "GeoPoint", "ensure_utc", "to_camel", "utcnow"]
