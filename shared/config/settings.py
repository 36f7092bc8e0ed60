"""Application configuration powered by ``pydantic-settings``."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MatchingSettings(BaseSettings):
    """Geometry constants used when ranking hospitals and ambulances."""

    earth_radius_km: float = Field(default=6371.0, description="Mean earth radius used by haversine")
    average_speed_kmh: float = Field(default=60.0, gt=0, description="Assumed ambulance speed for ETAs")
    nearing_radius_km: float = Field(default=1.0, gt=0, description="Distance under which a driver counts as arrived")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_MATCHING_", env_file=".env", extra="ignore")


class TrackingSettings(BaseSettings):
    """Read-cache windows for polled dashboard endpoints."""

    tracking_ttl_seconds: float = Field(default=2.0, description="Freshness window for tracking views")
    assignment_ttl_seconds: float = Field(default=2.0, description="Freshness window for driver assignments")
    feed_ttl_seconds: float = Field(default=3.0, description="Freshness window for hospital feeds")
    stale_window_seconds: float = Field(
        default=30.0, description="Maximum age of an entry served when storage is failing"
    )
    max_entries: int = Field(default=2048, gt=0, description="Upper bound on cached entries per cache")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_TRACKING_", env_file=".env", extra="ignore")


class ThrottleSettings(BaseSettings):
    """Server-side suppression of redundant driver location writes."""

    min_write_interval_seconds: float = Field(default=4.0, description="Minimum spacing between writes")
    min_movement_meters: float = Field(default=20.0, description="Movement that always forces a write")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_THROTTLE_", env_file=".env", extra="ignore")


class DocumentSettings(BaseSettings):
    """Medical document limits, capability tokens and the expiry sweep."""

    token_secret: Optional[str] = Field(default=None, description="HMAC secret for document view tokens")
    token_ttl_seconds: int = Field(default=300, gt=0, description="Lifetime of a document view token")
    document_ttl_minutes: int = Field(default=60, gt=0, description="Lifetime of an uploaded document")
    max_upload_bytes: int = Field(default=5 * 1024 * 1024, gt=0, description="Largest accepted upload")
    allowed_content_types: list[str] = Field(
        default_factory=lambda: ["application/pdf", "image/jpeg", "image/png", "image/webp"],
        description="Accepted MIME types for uploads",
    )
    signed_url_ttl_seconds: int = Field(default=60, gt=0, description="Lifetime of redirect blob URLs")
    sweep_interval_seconds: float = Field(
        default=300.0, description="Period of the in-process sweeper; 0 disables it"
    )
    sweep_batch_size: int = Field(default=200, gt=0, description="Documents removed per sweep batch")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_DOCUMENTS_", env_file=".env", extra="ignore")


class StorageSettings(BaseSettings):
    """Persistence backend selection."""

    database_url: Optional[str] = Field(
        default=None, description="SQLAlchemy async URL; the in-memory store is used when unset"
    )
    echo: bool = Field(default=False, description="Log emitted SQL statements")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_STORAGE_", env_file=".env", extra="ignore")


class SeveritySettings(BaseSettings):
    """Configuration for the Gemini-compatible symptom scorer."""

    api_key: Optional[str] = Field(default=None, description="Generative language API key")
    model: str = Field(default="gemini-1.5-flash", description="Model used for severity scoring")
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the generateContent API",
    )
    timeout_seconds: float = Field(default=10.0, description="Per-request timeout")
    retry_attempts: int = Field(default=2, ge=1, description="Attempts before falling back")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_SEVERITY_", env_file=".env", extra="ignore")


class GeoServiceSettings(BaseSettings):
    """Outbound geocoding and routing endpoints."""

    nominatim_search_url: str = Field(default="https://nominatim.openstreetmap.org/search")
    osrm_route_url: str = Field(default="https://router.project-osrm.org/route/v1/driving")
    user_agent: str = Field(default="emergency-dispatch/0.1", description="User-Agent sent to OSM services")
    timeout_seconds: float = Field(default=8.0)
    retry_attempts: int = Field(default=2, ge=1)

    model_config = SettingsConfigDict(env_prefix="DISPATCH_GEO_", env_file=".env", extra="ignore")


class BlobStoreSettings(BaseSettings):
    """Document blob storage."""

    root_directory: Optional[str] = Field(
        default=None, description="Directory for file-backed blobs; memory is used when unset"
    )
    signing_secret: Optional[str] = Field(default=None, description="HMAC secret for signed blob URLs")
    public_base_url: str = Field(default="http://localhost:8000/blobs", description="Base URL of signed links")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_BLOBS_", env_file=".env", extra="ignore")


class Settings(BaseSettings):
    """Top-level application settings namespace."""

    service_name: str = Field(default="dispatch", description="Name bound to every log line")
    log_level: str = Field(default="INFO")
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    throttle: ThrottleSettings = Field(default_factory=ThrottleSettings)
    documents: DocumentSettings = Field(default_factory=DocumentSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    severity: SeveritySettings = Field(default_factory=SeveritySettings)
    geo_services: GeoServiceSettings = Field(default_factory=GeoServiceSettings)
    blob_store: BlobStoreSettings = Field(default_factory=BlobStoreSettings)

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_", env_file=".env", env_nested_delimiter="__", extra="ignore"
    )


class DispatchClientSettings(BaseSettings):
    """Settings used by dashboards talking to the dispatch service."""

    base_url: str = Field(default="http://localhost:8000")
    timeout_seconds: float = Field(default=10.0)
    feed_interval_seconds: float = Field(default=12.0)
    tracking_interval_seconds: float = Field(default=8.0)
    assignment_interval_seconds: float = Field(default=15.0)
    backoff_cap_seconds: float = Field(default=60.0)
    location_min_interval_seconds: float = Field(default=5.0)
    location_min_delta_degrees: float = Field(default=0.00015)

    model_config = SettingsConfigDict(env_prefix="DISPATCH_CLIENT_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance for application use."""

    return Settings()


@lru_cache
def get_client_settings() -> DispatchClientSettings:
    return DispatchClientSettings()


__all__ = [
    "BlobStoreSettings",
    "DispatchClientSettings",
    "DocumentSettings",
    "GeoServiceSettings",
    "MatchingSettings",
    "SeveritySettings",
    "Settings",
    "StorageSettings",
    "ThrottleSettings",
    "TrackingSettings",
    "get_client_settings",
    "get_settings",
]
