"""Process-wide service wiring and FastAPI dependency providers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Depends, Header

from repositories.dispatch import DispatchRepository, InMemoryDispatchRepository
from repositories.sql import SQLDispatchRepository
from shared.config.settings import Settings, get_settings
from shared.http.errors import AccessDeniedError, AuthenticationRequiredError
from shared.models.base import utcnow
from shared.models.users import Identity, Role
from shared.observability.logger import get_logger

from .blob_store import BlobStore, build_blob_store
from .documents import DocumentService
from .feed import FeedService
from .geo_services import Geocoder, NominatimGeocoder, OsrmRouter, Router
from .location_pipeline import LocationPipeline
from .severity import GeminiSeverityScorer, SeverityScorer
from .state_machine import EmergencyStateMachine
from .sweeper import DocumentSweeper
from .tokens import DocumentTokenCodec
from .tracking import TrackingService
from .users import UserDirectory

__all__ = [
    "DispatchContainer",
    "build_container",
    "close_container",
    "get_container",
    "get_document_service",
    "get_feed_service",
    "get_identity",
    "get_location_pipeline",
    "get_state_machine",
    "get_tracking_service",
    "get_user_directory",
    "require_role",
    "set_container",
]

logger = get_logger(__name__)


@dataclass
class DispatchContainer:
    """Everything a request handler needs, built once per process."""

    settings: Settings
    repository: DispatchRepository
    blob_store: BlobStore
    codec: DocumentTokenCodec
    scorer: SeverityScorer | None
    geocoder: Geocoder | None
    router: Router | None
    state_machine: EmergencyStateMachine
    location_pipeline: LocationPipeline
    tracking: TrackingService
    feed: FeedService
    documents: DocumentService
    sweeper: DocumentSweeper
    users: UserDirectory


def _build_repository(settings: Settings) -> DispatchRepository:
    if settings.storage.database_url:
        return SQLDispatchRepository(settings.storage.database_url, echo=settings.storage.echo)
    return InMemoryDispatchRepository()


def build_container(
    settings: Settings | None = None,
    *,
    repository: DispatchRepository | None = None,
    blob_store: BlobStore | None = None,
    scorer: SeverityScorer | None = None,
    geocoder: Geocoder | None = None,
    router: Router | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> DispatchContainer:
    """Assemble the services from settings; explicit arguments win over settings."""

    settings = settings or get_settings()
    if repository is None:
        repository = _build_repository(settings)
    if blob_store is None:
        blob_store = build_blob_store(settings.blob_store)
    codec = DocumentTokenCodec(settings.documents.token_secret, ttl_seconds=settings.documents.token_ttl_seconds)
    if scorer is None and settings.severity.api_key:
        scorer = GeminiSeverityScorer.from_settings(settings.severity)
    if geocoder is None:
        geocoder = NominatimGeocoder.from_settings(settings.geo_services)
    if router is None:
        router = OsrmRouter.from_settings(settings.geo_services, average_speed_kmh=settings.matching.average_speed_kmh)

    return DispatchContainer(
        settings=settings,
        repository=repository,
        blob_store=blob_store,
        codec=codec,
        scorer=scorer,
        geocoder=geocoder,
        router=router,
        state_machine=EmergencyStateMachine(
            repository,
            scorer=scorer,
            geocoder=geocoder,
            clock=clock,
            average_speed_kmh=settings.matching.average_speed_kmh,
        ),
        location_pipeline=LocationPipeline(
            repository, matching=settings.matching, throttle=settings.throttle, clock=clock
        ),
        tracking=TrackingService(repository, settings=settings.tracking),
        feed=FeedService(repository, codec, settings=settings.tracking, clock=clock),
        documents=DocumentService(repository, blob_store, codec, settings=settings.documents, clock=clock),
        sweeper=DocumentSweeper(
            repository, blob_store, batch_size=settings.documents.sweep_batch_size, clock=clock
        ),
        users=UserDirectory(repository),
    )


_container: DispatchContainer | None = None


def get_container() -> DispatchContainer:
    """Return the shared container, building it on first use."""

    global _container
    if _container is None:
        _container = build_container()
    return _container


def set_container(container: DispatchContainer | None) -> None:
    """Replace the shared container; ``None`` forces a rebuild on next use."""

    global _container
    _container = container


async def close_container(container: DispatchContainer) -> None:
    """Release outbound clients and storage held by ``container``."""

    for name, resource in (
        ("severity", container.scorer),
        ("geocoder", container.geocoder),
        ("router", container.router),
    ):
        close = getattr(resource, "aclose", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as exc:  # pragma: no cover - best-effort cleanup
            logger.warning("dispatch_client_shutdown_failed", dependency=name, error=str(exc))
    await container.repository.dispose()


def get_identity(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    user_role: str | None = Header(default=None, alias="X-User-Role"),
) -> Identity:
    """Read the pre-verified identity forwarded by the upstream identity provider."""

    user_id = (user_id or "").strip()
    user_role = (user_role or "").strip().lower()
    if not user_id or not user_role:
        raise AuthenticationRequiredError("X-User-Id and X-User-Role headers are required.")
    try:
        role = Role(user_role)
    except ValueError as exc:
        raise AuthenticationRequiredError(f"Unknown role '{user_role}'.") from exc
    return Identity(id=user_id, role=role)


def require_role(role: Role) -> Callable[[Identity], Identity]:
    """Dependency factory rejecting identities of any other role with 403."""

    def _dependency(identity: Identity = Depends(get_identity)) -> Identity:
        if identity.role is not role:
            raise AccessDeniedError(f"Only {role.value} accounts can use this endpoint.")
        return identity

    return _dependency


def get_state_machine(container: DispatchContainer = Depends(get_container)) -> EmergencyStateMachine:
    return container.state_machine


def get_location_pipeline(container: DispatchContainer = Depends(get_container)) -> LocationPipeline:
    return container.location_pipeline


def get_tracking_service(container: DispatchContainer = Depends(get_container)) -> TrackingService:
    return container.tracking


def get_feed_service(container: DispatchContainer = Depends(get_container)) -> FeedService:
    return container.feed


def get_document_service(container: DispatchContainer = Depends(get_container)) -> DocumentService:
    return container.documents


def get_user_directory(container: DispatchContainer = Depends(get_container)) -> UserDirectory:
    return container.users
