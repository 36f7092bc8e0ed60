"""Problem details and the dispatch error taxonomy."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Mapping, cast

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.observability.logger import get_logger

__all__ = [
    "PROBLEM_BASE_URI",
    "AccessDeniedError",
    "AuthenticationRequiredError",
    "ConfigurationError",
    "DispatchValidationError",
    "ExpiredResourceError",
    "GeocodingFailedError",
    "InvalidTokenError",
    "InvalidTransitionError",
    "NoCapacityError",
    "ProblemDetails",
    "ProblemDetailsException",
    "ResourceNotFoundError",
    "StorageUnavailableError",
    "UpstreamDegradedError",
    "register_exception_handlers",
]

logger = get_logger(__name__)

PROBLEM_BASE_URI = "https://dispatch.example.org/problems"

_PROBLEM_FIELDS = {"type", "title", "status", "detail", "instance"}


class ProblemDetails(BaseModel):
    """Representation of an RFC 7807 problem details payload."""

    type: str = Field(default="about:blank", description="URI identifying the error type")
    title: str = Field(default="An error occurred", description="Short human-readable summary")
    status: int = Field(default=status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail: str | None = Field(default=None, description="Detailed description of the error")
    instance: str | None = Field(default=None, description="URI identifying the specific occurrence")
    errors: list[Any] | None = Field(default=None, description="Detailed validation errors when applicable")

    model_config = ConfigDict(extra="allow")


class ProblemDetailsException(RuntimeError):
    """Base exception carrying structured problem details metadata."""

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_title = "Service Error"
    default_type = "about:blank"

    def __init__(
        self,
        detail: str | None = None,
        *,
        status_code: int | None = None,
        title: str | None = None,
        type_uri: str | None = None,
        instance: str | None = None,
        extensions: Mapping[str, Any] | None = None,
    ) -> None:
        message = detail or title or self.default_title
        super().__init__(message)
        self.detail = detail or message
        self.status_code = status_code or self.default_status_code
        self.title = title or self.default_title
        self.problem_type = type_uri or self.default_type
        self.instance = instance
        self.extensions = dict(extensions or {})

    def to_problem_details(self, *, instance: str | None = None) -> ProblemDetails:
        """Return a :class:`ProblemDetails` representation of the exception."""

        payload: dict[str, Any] = dict(self.extensions)
        return ProblemDetails(
            type=self.problem_type,
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=instance or self.instance,
            **payload,
        )


class DispatchValidationError(ProblemDetailsException):
    """Raised when an input has the wrong shape, range or enum value."""

    default_status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_title = "Validation Failed"
    default_type = f"{PROBLEM_BASE_URI}/validation"

    def __init__(self, detail: str, *, field: str | None = None, **extensions: Any) -> None:
        self.field = field
        payload = dict(extensions)
        if field:
            payload["field"] = field
        super().__init__(detail, extensions=payload)


class InvalidTransitionError(DispatchValidationError):
    """Raised when an emergency status change is not in the transition table."""

    default_status_code = status.HTTP_409_CONFLICT
    default_title = "Invalid Status Transition"
    default_type = f"{PROBLEM_BASE_URI}/invalid-transition"

    def __init__(self, current: str, requested: str, *, detail: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            detail or f"Cannot move an emergency from '{current}' to '{requested}'.",
            currentStatus=current,
            requestedStatus=requested,
        )


class ResourceNotFoundError(ProblemDetailsException):
    """Raised when a referenced user, emergency or document does not exist."""

    default_status_code = status.HTTP_404_NOT_FOUND
    default_title = "Resource Not Found"
    default_type = f"{PROBLEM_BASE_URI}/not-found"

    def __init__(self, resource: str, identifier: str, *, detail: str | None = None) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            detail or f"{resource.capitalize()} '{identifier}' was not found.",
            extensions={"resource": resource, "resourceId": identifier},
        )


class AccessDeniedError(ProblemDetailsException):
    """Raised when the requester is not a party to the resource."""

    default_status_code = status.HTTP_403_FORBIDDEN
    default_title = "Access Denied"
    default_type = f"{PROBLEM_BASE_URI}/access-denied"

    def __init__(self, detail: str = "You are not allowed to access this resource.") -> None:
        super().__init__(detail)


class AuthenticationRequiredError(ProblemDetailsException):
    """Raised when a request carries no usable identity."""

    default_status_code = status.HTTP_401_UNAUTHORIZED
    default_title = "Authentication Required"
    default_type = f"{PROBLEM_BASE_URI}/authentication-required"

    def __init__(self, detail: str = "A user identity and role are required.") -> None:
        super().__init__(detail)


class InvalidTokenError(ProblemDetailsException):
    """Raised when a document capability token is malformed, forged or expired."""

    default_status_code = status.HTTP_401_UNAUTHORIZED
    default_title = "Invalid Token"
    default_type = f"{PROBLEM_BASE_URI}/invalid-token"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("The document token is invalid or has expired.", extensions={"reason": reason})


class UpstreamDegradedError(ProblemDetailsException):
    """Raised by outbound clients when a third-party dependency misbehaves.

    Dispatch absorbs this error and continues with a fallback; it only reaches
    an HTTP client from endpoints whose whole purpose is the upstream call.
    """

    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_title = "Upstream Degraded"
    default_type = f"{PROBLEM_BASE_URI}/upstream-degraded"

    def __init__(self, upstream: str, *, reason: str | None = None, detail: str | None = None) -> None:
        self.upstream = upstream
        self.reason = reason
        extensions: dict[str, Any] = {"upstream": upstream}
        if reason:
            extensions["reason"] = reason
        super().__init__(
            detail or f"The '{upstream}' dependency is temporarily unavailable.",
            extensions=extensions,
        )


class NoCapacityError(ProblemDetailsException):
    """Raised when no active hospital exists to receive an emergency."""

    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_title = "No Hospitals Available"
    default_type = f"{PROBLEM_BASE_URI}/no-capacity"

    def __init__(self, *, emergency_id: str | None = None, detail: str | None = None) -> None:
        self.emergency_id = emergency_id
        extensions: dict[str, Any] = {"outcome": "no_hospitals_available"}
        if emergency_id:
            extensions["emergencyId"] = emergency_id
        super().__init__(
            detail or "No hospitals are available right now. Please call your local emergency number.",
            extensions=extensions,
        )


class ExpiredResourceError(ProblemDetailsException):
    """Raised when a document is requested after its expiry."""

    default_status_code = status.HTTP_410_GONE
    default_title = "Resource Expired"
    default_type = f"{PROBLEM_BASE_URI}/expired"

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            f"{resource.capitalize()} '{identifier}' has expired.",
            extensions={"resource": resource, "resourceId": identifier},
        )


class StorageUnavailableError(ProblemDetailsException):
    """Raised when the backing store fails and no stale cache entry can be served."""

    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_title = "Storage Unavailable"
    default_type = f"{PROBLEM_BASE_URI}/storage-unavailable"


class GeocodingFailedError(ProblemDetailsException):
    """Raised when an address cannot be resolved to coordinates."""

    default_status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_title = "Geocoding Failed"
    default_type = f"{PROBLEM_BASE_URI}/geocoding-failed"

    def __init__(self, address: str, *, reason: str | None = None) -> None:
        self.address = address
        extensions: dict[str, Any] = {"address": address}
        if reason:
            extensions["reason"] = reason
        super().__init__(f"Could not locate the address '{address}'.", extensions=extensions)


class ConfigurationError(ProblemDetailsException):
    """Raised when a required setting is missing at the point of use."""

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_title = "Service Misconfigured"
    default_type = f"{PROBLEM_BASE_URI}/misconfigured"

    def __init__(self, setting: str) -> None:
        self.setting = setting
        super().__init__(f"The '{setting}' setting must be configured.", extensions={"setting": setting})


def _problem_response(problem: ProblemDetails) -> JSONResponse:
    payload = problem.model_dump(mode="json", exclude_none=True)
    status_code = payload.get("status", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(payload, status_code=status_code, media_type="application/problem+json")


def _status_title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:  # pragma: no cover
        return "HTTP Error"


def _normalize_detail(detail: Any) -> tuple[str | None, dict[str, Any]]:
    if isinstance(detail, Mapping):
        detail_value = detail.get("detail")
        if detail_value is None:
            detail_value = detail.get("message") or detail.get("error")
        normalized = str(detail_value) if detail_value is not None else None
        extras = {k: v for k, v in detail.items() if k not in _PROBLEM_FIELDS}
        return normalized, extras
    if isinstance(detail, list):
        return None, {"errors": detail}
    if detail is None:
        return None, {}
    return str(detail), {}


def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    detail, extras = _normalize_detail(exc.detail)
    problem = ProblemDetails(
        type="about:blank",
        title=_status_title(exc.status_code),
        status=exc.status_code,
        detail=detail,
        instance=request.url.path,
        **extras,
    )
    return _problem_response(problem)


def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_error = cast(RequestValidationError, exc)
    problem = ProblemDetails(
        type=f"{PROBLEM_BASE_URI}/request-validation",
        title="Request Validation Failed",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail="One or more request parameters failed validation.",
        instance=request.url.path,
        errors=jsonable_encoder(validation_error.errors()),
    )
    return _problem_response(problem)


def _problem_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    problem_exception = cast(ProblemDetailsException, exc)
    if problem_exception.status_code >= 500:
        logger.warning(
            "problem_response",
            title=problem_exception.title,
            status=problem_exception.status_code,
            path=request.url.path,
        )
    problem = problem_exception.to_problem_details(instance=request.url.path)
    return _problem_response(problem)


def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", error=str(exc), path=request.url.path)
    problem = ProblemDetails(
        type=f"{PROBLEM_BASE_URI}/internal-server-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred while processing the request.",
        instance=request.url.path,
    )
    return _problem_response(problem)


def register_exception_handlers(app: FastAPI) -> None:
    """Register shared exception handlers that emit RFC 7807 problem details."""

    app.add_exception_handler(ProblemDetailsException, _problem_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
