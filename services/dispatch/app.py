"""FastAPI application exposing emergency dispatch, tracking and documents."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, File, Form, Query, Response, UploadFile, status
from fastapi.responses import RedirectResponse

from repositories.sql import SQLDispatchRepository
from shared.http.errors import DispatchValidationError, NoCapacityError, ResourceNotFoundError, register_exception_handlers
from shared.models.base import GeoPoint
from shared.models.documents import DocumentListResponse, DocumentView, GenerateReportRequest
from shared.models.emergency import (
    AcceptCaseResponse,
    DispatchOutcome,
    DriverActionRequest,
    DriverLocationRequest,
    Emergency,
    EmergencyStatus,
    NavigationPhase,
    PatientLocationResponse,
    TriggerEmergencyRequest,
    TriggerEmergencyResponse,
    UpdatePatientLocationRequest,
)
from shared.models.tracking import BedCountsResponse, DriverAssignment, FeedPage, LocationReport, TrackingView
from shared.models.users import (
    BedCounts,
    DriverSummary,
    HospitalSummary,
    HospitalUser,
    Identity,
    Role,
    UpdateLocationRequest,
    User,
)
from shared.observability.logger import configure_logging, get_logger
from shared.observability.middleware import (
    CorrelationIdMiddleware,
    RequestTimingMiddleware,
)

from .dependencies import (
    DispatchContainer,
    close_container,
    get_container,
    get_document_service,
    get_feed_service,
    get_identity,
    get_location_pipeline,
    get_state_machine,
    get_tracking_service,
    get_user_directory,
    require_role,
    set_container,
)
from .documents import DocumentService
from .feed import FeedService
from .geo_services import straight_line_route
from .location_pipeline import LocationPipeline
from .state_machine import EmergencyStateMachine
from .tracking import TrackingService
from .users import UserDirectory

SERVICE_NAME = "dispatch"

configure_logging(service_name=SERVICE_NAME)

app = FastAPI(title="Emergency Dispatch Service")
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)

logger = get_logger(__name__)

users_router = APIRouter(prefix="/users", tags=["users"])
patient_router = APIRouter(prefix="/patient", tags=["patient"])
emergency_router = APIRouter(prefix="/emergencies", tags=["tracking"])
hospital_router = APIRouter(prefix="/hospital", tags=["hospital"])
driver_router = APIRouter(prefix="/driver", tags=["driver"])
documents_router = APIRouter(prefix="/documents", tags=["documents"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Content-Type-Options": "nosniff",
}

_sweeper_task: asyncio.Task[None] | None = None


@app.on_event("startup")
async def start_dispatch() -> None:
    """Create SQL tables when needed and start the document sweeper."""

    global _sweeper_task
    container = get_container()
    if isinstance(container.repository, SQLDispatchRepository):
        await container.repository.create_schema()
    interval = container.settings.documents.sweep_interval_seconds
    if interval > 0 and _sweeper_task is None:
        _sweeper_task = asyncio.create_task(container.sweeper.run_forever(interval))
        logger.info("document_sweeper_started", interval_seconds=interval)


@app.on_event("shutdown")
async def stop_dispatch() -> None:
    """Stop the sweeper and release outbound clients and storage."""

    global _sweeper_task
    if _sweeper_task is not None:
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
        _sweeper_task = None
    container = get_container()
    await close_container(container)
    set_container(None)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    """Return a simple health payload for orchestration checks."""

    return {"status": "ok", "service": SERVICE_NAME}


@users_router.post("", response_model=User, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: dict[str, Any] = Body(...),
    directory: UserDirectory = Depends(get_user_directory),
) -> User:
    """Register a patient, hospital or driver; the body is tagged by ``role``."""

    return await directory.register(payload)


@users_router.get("/me", response_model=User)
async def read_current_user(
    identity: Identity = Depends(get_identity),
    directory: UserDirectory = Depends(get_user_directory),
) -> User:
    return await directory.get(identity)


@users_router.post("/me/location", response_model=User)
async def update_own_location(
    payload: UpdateLocationRequest,
    identity: Identity = Depends(get_identity),
    pipeline: LocationPipeline = Depends(get_location_pipeline),
) -> User:
    return await pipeline.update_user_location(identity, payload.lat, payload.lng, payload.address)


@patient_router.post(
    "/sos",
    response_model=TriggerEmergencyResponse,
    status_code=status.HTTP_201_CREATED,
    responses={202: {"description": "Hospital assigned without an ambulance"}},
)
async def trigger_emergency(
    payload: TriggerEmergencyRequest,
    response: Response,
    identity: Identity = Depends(require_role(Role.PATIENT)),
    machine: EmergencyStateMachine = Depends(get_state_machine),
) -> TriggerEmergencyResponse:
    """Create an emergency and dispatch the nearest hospital and ambulance."""

    result = await machine.create(identity.id, payload.location, payload.symptoms)
    if result.outcome is DispatchOutcome.NO_HOSPITALS_AVAILABLE:
        raise NoCapacityError(emergency_id=result.emergency.id)
    if result.outcome is not DispatchOutcome.DISPATCHED:
        response.status_code = status.HTTP_202_ACCEPTED

    match = result.match
    return TriggerEmergencyResponse(
        emergency_id=result.emergency.id,
        outcome=result.outcome,
        status=result.emergency.status,
        message=match.message,
        degraded=match.degraded,
        hospital=(
            HospitalSummary.from_user(match.hospital, distance_km=match.hospital_distance_km)
            if match.hospital
            else None
        ),
        driver=DriverSummary.from_user(match.driver) if match.driver else None,
        distance_km=result.emergency.distance_km,
        eta_minutes=result.emergency.eta_minutes,
        severity=result.severity,
    )


@patient_router.patch("/sos", response_model=PatientLocationResponse)
async def update_patient_location(
    payload: UpdatePatientLocationRequest,
    identity: Identity = Depends(require_role(Role.PATIENT)),
    machine: EmergencyStateMachine = Depends(get_state_machine),
) -> PatientLocationResponse:
    result = await machine.update_patient_location(identity.id, payload.emergency_id, payload.location)
    return PatientLocationResponse(
        emergency_id=result.emergency.id,
        status=result.emergency.status,
        location=result.emergency.location,
        updated=result.updated,
    )


@emergency_router.get("/{emergency_id}/tracking", response_model=TrackingView)
async def read_tracking(
    emergency_id: str,
    identity: Identity = Depends(get_identity),
    tracking: TrackingService = Depends(get_tracking_service),
) -> TrackingView:
    """Polled by all three dashboards; answers from a short-lived cache."""

    return await tracking.get_tracking(emergency_id, identity)


@hospital_router.get("/emergencies", response_model=FeedPage)
async def read_hospital_feed(
    status_filter: Optional[EmergencyStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    identity: Identity = Depends(require_role(Role.HOSPITAL)),
    feed: FeedService = Depends(get_feed_service),
) -> FeedPage:
    return await feed.list_hospital_feed(identity.id, status_filter, limit, offset)


@hospital_router.post("/emergencies/{emergency_id}/accept", response_model=AcceptCaseResponse)
async def accept_case(
    emergency_id: str,
    identity: Identity = Depends(require_role(Role.HOSPITAL)),
    machine: EmergencyStateMachine = Depends(get_state_machine),
) -> AcceptCaseResponse:
    emergency = await machine.accept_case(identity.id, emergency_id)
    return AcceptCaseResponse(
        emergency_id=emergency.id,
        status=emergency.status,
        assigned_hospital_id=emergency.assigned_hospital_id,
        assigned_driver_id=emergency.assigned_driver_id,
        accepted_at=emergency.accepted_at,
    )


@hospital_router.get("/beds", response_model=BedCountsResponse)
async def read_bed_counts(
    identity: Identity = Depends(require_role(Role.HOSPITAL)),
    feed: FeedService = Depends(get_feed_service),
) -> BedCountsResponse:
    return await feed.get_bed_counts(identity.id)


@hospital_router.put("/beds", response_model=BedCountsResponse)
async def update_bed_counts(
    payload: BedCounts,
    identity: Identity = Depends(require_role(Role.HOSPITAL)),
    feed: FeedService = Depends(get_feed_service),
) -> BedCountsResponse:
    return await feed.update_bed_counts(identity.id, payload)


@driver_router.get(
    "/assignment",
    response_model=DriverAssignment,
    responses={204: {"description": "No active assignment"}},
)
async def read_driver_assignment(
    identity: Identity = Depends(require_role(Role.DRIVER)),
    tracking: TrackingService = Depends(get_tracking_service),
) -> Any:
    assignment = await tracking.get_driver_assignment(identity.id)
    if assignment is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return assignment


@driver_router.post("/location", response_model=LocationReport)
async def report_driver_location(
    payload: DriverLocationRequest,
    identity: Identity = Depends(require_role(Role.DRIVER)),
    pipeline: LocationPipeline = Depends(get_location_pipeline),
) -> LocationReport:
    """Accept a GPS ping; redundant pings are answered without a write."""

    return await pipeline.report_driver_location(identity.id, payload.emergency_id, payload.lat, payload.lng)


@driver_router.patch("/status", response_model=Emergency)
async def apply_driver_action(
    payload: DriverActionRequest,
    identity: Identity = Depends(require_role(Role.DRIVER)),
    machine: EmergencyStateMachine = Depends(get_state_machine),
) -> Emergency:
    return await machine.update_driver_action(identity.id, payload.emergency_id, payload.action)


async def _route_target(container: DispatchContainer, emergency: Emergency) -> GeoPoint:
    if emergency.navigation_phase is NavigationPhase.TO_HOSPITAL and emergency.assigned_hospital_id:
        hospital = await container.repository.get_user(emergency.assigned_hospital_id)
        if isinstance(hospital, HospitalUser) and hospital.location is not None:
            return hospital.location
    return GeoPoint(lat=emergency.location.lat, lng=emergency.location.lng)


@driver_router.get("/route")
async def read_driver_route(
    emergency_id: Optional[str] = Query(default=None, alias="emergencyId"),
    identity: Identity = Depends(require_role(Role.DRIVER)),
    container: DispatchContainer = Depends(get_container),
) -> dict[str, Any]:
    """Driving directions from the ambulance to its current target."""

    if emergency_id is None:
        assignment = await container.tracking.get_driver_assignment(identity.id)
        if assignment is None:
            raise ResourceNotFoundError("assignment", identity.id)
        emergency = assignment.emergency
    else:
        found = await container.repository.get_emergency(emergency_id)
        if found is None:
            raise ResourceNotFoundError("emergency", emergency_id)
        if found.assigned_driver_id != identity.id:
            raise ResourceNotFoundError("assignment", emergency_id)
        emergency = found

    origin = emergency.driver_location
    if origin is None:
        driver = await container.repository.get_user(identity.id)
        origin = driver.location if driver is not None else None
    if origin is None:
        raise DispatchValidationError("Report a location before requesting a route.", field="location")

    destination = await _route_target(container, emergency)
    if container.router is None:
        route = straight_line_route(
            origin, destination, average_speed_kmh=container.settings.matching.average_speed_kmh
        )
    else:
        route = await container.router.route(origin, destination)
    return {"emergencyId": emergency.id, "navigationPhase": emergency.navigation_phase.value, **route.to_dict()}


@documents_router.post("", response_model=DocumentView, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    emergency_id: str = Form(..., alias="emergencyId"),
    doc_type: str = Form(default="other", alias="type"),
    identity: Identity = Depends(get_identity),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentView:
    """Attach a file to the caller's emergency; it expires after an hour."""

    data = await file.read()
    return await documents.upload(
        identity,
        emergency_id,
        filename=file.filename or "document",
        content_type=file.content_type or "",
        data=data,
        doc_type=doc_type,
    )


@documents_router.post("/generate-pdf", response_model=DocumentView, status_code=status.HTTP_201_CREATED)
async def generate_symptom_report(
    payload: GenerateReportRequest,
    identity: Identity = Depends(get_identity),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentView:
    return await documents.generate_symptom_report(identity, payload.emergency_id, payload.text, payload.title)


@documents_router.get("/view")
async def view_document(
    token: str = Query(..., min_length=1),
    documents: DocumentService = Depends(get_document_service),
) -> Response:
    """Serve document bytes uncached, or redirect to a short-lived blob URL."""

    content = await documents.open_document(token)
    if content.redirect_url is not None:
        return RedirectResponse(content.redirect_url, status_code=status.HTTP_302_FOUND, headers=NO_STORE_HEADERS)
    headers = dict(NO_STORE_HEADERS)
    headers["Content-Disposition"] = f'inline; filename="{content.document.filename}"'
    return Response(
        content=content.data,
        media_type=content.content_type or content.document.content_type,
        headers=headers,
    )


@documents_router.get("", response_model=DocumentListResponse)
async def list_documents(
    emergency_id: str = Query(..., alias="emergencyId"),
    identity: Identity = Depends(get_identity),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentListResponse:
    views = await documents.list_documents(identity, emergency_id)
    return DocumentListResponse(emergency_id=emergency_id, documents=views)


@documents_router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    emergency_id: str = Query(..., alias="emergencyId"),
    identity: Identity = Depends(get_identity),
    documents: DocumentService = Depends(get_document_service),
) -> Response:
    await documents.delete_document(identity, emergency_id, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


app.include_router(users_router)
app.include_router(patient_router)
app.include_router(emergency_router)
app.include_router(hospital_router)
app.include_router(driver_router)
app.include_router(documents_router)


def get_app() -> FastAPI:
    """Return the FastAPI app instance."""

    return app


__all__ = ["app", "get_app", "health"]
