"""Async HTTP client used by the patient, hospital and driver dashboards."""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from shared.config.settings import DispatchClientSettings
from shared.models.documents import DocumentListResponse, DocumentView
from shared.models.emergency import (
    AcceptCaseResponse,
    DriverAction,
    Emergency,
    PatientLocationResponse,
    TriggerEmergencyResponse,
)
from shared.models.tracking import BedCountsResponse, DriverAssignment, FeedPage, LocationReport, TrackingView
from shared.models.users import USER_ADAPTER, BedCounts, Identity, User

__all__ = ["DispatchAPIClient", "DispatchClientError"]


class DispatchClientError(RuntimeError):
    """Raised for transport failures and non-2xx responses.

    ``problem`` holds the decoded problem-details body when the service sent
    one; ``status_code`` is ``None`` when no response was received.
    """

    def __init__(self, message: str, *, status_code: int | None = None, problem: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.problem = dict(problem or {})

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class DispatchAPIClient:
    """Thin wrapper around the dispatch HTTP surface for one signed-in user."""

    def __init__(self, identity: Identity, http_client: httpx.AsyncClient) -> None:
        self._identity = identity
        self._http = http_client

    @classmethod
    def from_settings(
        cls,
        identity: Identity,
        settings: DispatchClientSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "DispatchAPIClient":
        http_client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=settings.timeout_seconds,
            transport=transport,
        )
        return cls(identity, http_client)

    @property
    def identity(self) -> Identity:
        return self._identity

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "DispatchAPIClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        return {"X-User-Id": self._identity.id, "X-User-Role": self._identity.role.value}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise DispatchClientError(f"{method} {path} failed: {exc}") from exc

        if response.is_success:
            return response

        problem: dict[str, Any] | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            problem = body
        detail = (problem or {}).get("detail") or response.reason_phrase
        raise DispatchClientError(
            f"{method} {path} returned {response.status_code}: {detail}",
            status_code=response.status_code,
            problem=problem,
        )

    async def register(self, payload: Mapping[str, Any]) -> User:
        response = await self._request("POST", "/users", json=dict(payload))
        return USER_ADAPTER.validate_python(response.json())

    async def update_own_location(self, lat: float, lng: float, address: str | None = None) -> User:
        response = await self._request(
            "POST", "/users/me/location", json={"lat": lat, "lng": lng, "address": address}
        )
        return USER_ADAPTER.validate_python(response.json())

    async def trigger_sos(
        self,
        *,
        lat: float | None = None,
        lng: float | None = None,
        address: str | None = None,
        symptoms: str | None = None,
    ) -> TriggerEmergencyResponse:
        body = {"location": {"lat": lat, "lng": lng, "address": address}, "symptoms": symptoms}
        response = await self._request("POST", "/patient/sos", json=body)
        return TriggerEmergencyResponse.model_validate(response.json())

    async def update_patient_location(
        self, emergency_id: str, *, lat: float | None = None, lng: float | None = None, address: str | None = None
    ) -> PatientLocationResponse:
        body = {"emergencyId": emergency_id, "location": {"lat": lat, "lng": lng, "address": address}}
        response = await self._request("PATCH", "/patient/sos", json=body)
        return PatientLocationResponse.model_validate(response.json())

    async def get_tracking(self, emergency_id: str) -> TrackingView:
        response = await self._request("GET", f"/emergencies/{emergency_id}/tracking")
        return TrackingView.model_validate(response.json())

    async def get_hospital_feed(
        self, *, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> FeedPage:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        response = await self._request("GET", "/hospital/emergencies", params=params)
        return FeedPage.model_validate(response.json())

    async def accept_case(self, emergency_id: str) -> AcceptCaseResponse:
        response = await self._request("POST", f"/hospital/emergencies/{emergency_id}/accept")
        return AcceptCaseResponse.model_validate(response.json())

    async def get_bed_counts(self) -> BedCountsResponse:
        response = await self._request("GET", "/hospital/beds")
        return BedCountsResponse.model_validate(response.json())

    async def update_bed_counts(self, counts: BedCounts) -> BedCountsResponse:
        response = await self._request("PUT", "/hospital/beds", json=counts.model_dump(by_alias=True))
        return BedCountsResponse.model_validate(response.json())

    async def get_driver_assignment(self) -> DriverAssignment | None:
        response = await self._request("GET", "/driver/assignment")
        if response.status_code == 204 or not response.content:
            return None
        return DriverAssignment.model_validate(response.json())

    async def report_driver_location(self, emergency_id: str, lat: float, lng: float) -> LocationReport:
        response = await self._request(
            "POST", "/driver/location", json={"emergencyId": emergency_id, "lat": lat, "lng": lng}
        )
        return LocationReport.model_validate(response.json())

    async def apply_driver_action(self, emergency_id: str, action: DriverAction | str) -> Emergency:
        response = await self._request(
            "PATCH", "/driver/status", json={"emergencyId": emergency_id, "action": DriverAction(action).value}
        )
        return Emergency.model_validate(response.json())

    async def get_driver_route(self, emergency_id: str | None = None) -> dict[str, Any]:
        params = {"emergencyId": emergency_id} if emergency_id else None
        response = await self._request("GET", "/driver/route", params=params)
        return response.json()

    async def upload_document(
        self,
        emergency_id: str,
        *,
        filename: str,
        content: bytes,
        content_type: str,
        doc_type: str = "other",
    ) -> DocumentView:
        response = await self._request(
            "POST",
            "/documents",
            data={"emergencyId": emergency_id, "type": doc_type},
            files={"file": (filename, content, content_type)},
        )
        return DocumentView.model_validate(response.json())

    async def generate_symptom_report(
        self, emergency_id: str, text: str, title: str | None = None
    ) -> DocumentView:
        body: dict[str, Any] = {"emergencyId": emergency_id, "text": text}
        if title:
            body["title"] = title
        response = await self._request("POST", "/documents/generate-pdf", json=body)
        return DocumentView.model_validate(response.json())

    async def list_documents(self, emergency_id: str) -> DocumentListResponse:
        response = await self._request("GET", "/documents", params={"emergencyId": emergency_id})
        return DocumentListResponse.model_validate(response.json())

    async def delete_document(self, emergency_id: str, document_id: str) -> None:
        await self._request("DELETE", f"/documents/{document_id}", params={"emergencyId": emergency_id})

    async def open_document(self, token: str) -> httpx.Response:
        """Fetch a document view; a redirect response is returned as-is."""

        return await self._request("GET", "/documents/view", params={"token": token})
