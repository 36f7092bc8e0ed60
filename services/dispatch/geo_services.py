"""Address geocoding (Nominatim) and driving routes (OSRM) with straight-line fallback."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from shared.config.settings import GeoServiceSettings
from shared.geo.georank import AVERAGE_SPEED_KMH, calculate_distance, calculate_eta
from shared.http.errors import GeocodingFailedError
from shared.models.base import GeoPoint
from shared.observability.logger import get_logger

from .resilience import RetryPolicy, call_async_with_retry, raise_for_retryable_status

__all__ = [
    "GeocodedAddress",
    "Geocoder",
    "NominatimGeocoder",
    "OsrmRouter",
    "Route",
    "RouteStep",
    "Router",
    "straight_line_route",
]

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class GeocodedAddress:
    lat: float
    lng: float
    formatted: str | None = None


@dataclass(frozen=True, slots=True)
class RouteStep:
    instruction: str
    distance_km: float
    duration_minutes: float


@dataclass(frozen=True, slots=True)
class Route:
    distance_km: float
    duration_minutes: float
    steps: list[RouteStep] = field(default_factory=list)
    polyline: list[tuple[float, float]] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "distanceKm": self.distance_km,
            "durationMinutes": self.duration_minutes,
            "steps": [
                {
                    "instruction": step.instruction,
                    "distanceKm": step.distance_km,
                    "durationMinutes": step.duration_minutes,
                }
                for step in self.steps
            ],
            "polyline": [[lat, lng] for lat, lng in self.polyline],
            "degraded": self.degraded,
        }


class Geocoder(Protocol):
    async def geocode(self, address: str) -> GeocodedAddress:  # pragma: no cover - interface definition
        ...


class Router(Protocol):
    async def route(self, origin: GeoPoint, destination: GeoPoint) -> Route:  # pragma: no cover - interface definition
        ...


def straight_line_route(
    origin: GeoPoint, destination: GeoPoint, *, average_speed_kmh: float = AVERAGE_SPEED_KMH
) -> Route:
    """Great-circle estimate used when the routing service is unavailable."""

    distance = calculate_distance(origin.lat, origin.lng, destination.lat, destination.lng)
    minutes = float(calculate_eta(distance, average_speed_kmh))
    return Route(
        distance_km=distance,
        duration_minutes=minutes,
        steps=[RouteStep(instruction="Head towards the destination", distance_km=distance, duration_minutes=minutes)],
        polyline=[],
        degraded=True,
    )


class _HTTPService:
    def __init__(
        self,
        *,
        user_agent: str,
        http_client: httpx.AsyncClient | None,
        timeout: float,
        retry_policy: RetryPolicy | None,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._retry_policy = retry_policy or RetryPolicy()

    async def _get_json(self, url: str, params: dict[str, Any], upstream: str) -> Any:
        async def _call() -> Any:
            response = await self._client.get(url, params=params, headers=self._headers)
            raise_for_retryable_status(response)
            response.raise_for_status()
            return response.json()

        return await call_async_with_retry(_call, policy=self._retry_policy, upstream=upstream)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class NominatimGeocoder(_HTTPService):
    """Resolves free-text addresses through the OpenStreetMap search API."""

    def __init__(
        self,
        *,
        search_url: str = "https://nominatim.openstreetmap.org/search",
        user_agent: str = "emergency-dispatch/0.1",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 8.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(user_agent=user_agent, http_client=http_client, timeout=timeout, retry_policy=retry_policy)
        self._search_url = search_url

    @classmethod
    def from_settings(
        cls, settings: GeoServiceSettings, *, http_client: httpx.AsyncClient | None = None
    ) -> "NominatimGeocoder":
        return cls(
            search_url=settings.nominatim_search_url,
            user_agent=settings.user_agent,
            http_client=http_client,
            timeout=settings.timeout_seconds,
            retry_policy=RetryPolicy(attempts=settings.retry_attempts),
        )

    async def geocode(self, address: str) -> GeocodedAddress:
        try:
            results = await self._get_json(
                self._search_url,
                {"q": address, "format": "jsonv2", "limit": 1},
                upstream="nominatim",
            )
        except (httpx.HTTPError, ValueError, RuntimeError) as exc:
            logger.warning("geocoding_failed", address=address, error=str(exc))
            raise GeocodingFailedError(address, reason="upstream_unavailable") from exc

        if not isinstance(results, list) or not results:
            raise GeocodingFailedError(address, reason="no_match")
        first = results[0]
        try:
            lat = float(first["lat"])
            lng = float(first["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingFailedError(address, reason="malformed_response") from exc
        return GeocodedAddress(lat=lat, lng=lng, formatted=first.get("display_name"))


class OsrmRouter(_HTTPService):
    """Driving routes from an OSRM ``route/v1/driving`` endpoint."""

    def __init__(
        self,
        *,
        route_url: str = "https://router.project-osrm.org/route/v1/driving",
        user_agent: str = "emergency-dispatch/0.1",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 8.0,
        retry_policy: RetryPolicy | None = None,
        average_speed_kmh: float = AVERAGE_SPEED_KMH,
    ) -> None:
        super().__init__(user_agent=user_agent, http_client=http_client, timeout=timeout, retry_policy=retry_policy)
        self._route_url = route_url.rstrip("/")
        self._average_speed_kmh = average_speed_kmh

    @classmethod
    def from_settings(
        cls,
        settings: GeoServiceSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        average_speed_kmh: float = AVERAGE_SPEED_KMH,
    ) -> "OsrmRouter":
        return cls(
            route_url=settings.osrm_route_url,
            user_agent=settings.user_agent,
            http_client=http_client,
            timeout=settings.timeout_seconds,
            retry_policy=RetryPolicy(attempts=settings.retry_attempts),
            average_speed_kmh=average_speed_kmh,
        )

    async def route(self, origin: GeoPoint, destination: GeoPoint) -> Route:
        # OSRM expects lng,lat ordering.
        coordinates = f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        try:
            payload = await self._get_json(
                f"{self._route_url}/{coordinates}",
                {"overview": "full", "geometries": "geojson", "steps": "true"},
                upstream="osrm",
            )
            return _parse_osrm_route(payload)
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError, RuntimeError) as exc:
            logger.warning("routing_degraded", error=str(exc))
            return straight_line_route(origin, destination, average_speed_kmh=self._average_speed_kmh)


def _describe_step(step: dict[str, Any]) -> str:
    maneuver = step.get("maneuver") or {}
    kind = str(maneuver.get("type") or "continue").replace("_", " ")
    modifier = maneuver.get("modifier")
    name = step.get("name")
    text = f"{kind} {modifier}" if modifier else kind
    if name:
        text = f"{text} onto {name}"
    return text[:1].upper() + text[1:]


def _parse_osrm_route(payload: Any) -> Route:
    if not isinstance(payload, dict) or payload.get("code") != "Ok":
        raise ValueError(f"OSRM returned {payload.get('code') if isinstance(payload, dict) else payload!r}")
    best = payload["routes"][0]
    steps = [
        RouteStep(
            instruction=_describe_step(step),
            distance_km=round(float(step.get("distance", 0.0)) / 1000.0, 2),
            duration_minutes=round(float(step.get("duration", 0.0)) / 60.0, 1),
        )
        for leg in best.get("legs", [])
        for step in leg.get("steps", [])
    ]
    coordinates = (best.get("geometry") or {}).get("coordinates") or []
    return Route(
        distance_km=round(float(best["distance"]) / 1000.0, 1),
        duration_minutes=round(float(best["duration"]) / 60.0, 1),
        steps=steps,
        polyline=[(float(lat), float(lng)) for lng, lat in coordinates],
        degraded=False,
    )
