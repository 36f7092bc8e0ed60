"""HTTP helpers and the dispatch error taxonomy."""

from .errors import (
    AccessDeniedError,
    AuthenticationRequiredError,
    ConfigurationError,
    DispatchValidationError,
    ExpiredResourceError,
    GeocodingFailedError,
    InvalidTokenError,
    InvalidTransitionError,
    NoCapacityError,
    ProblemDetails,
    ProblemDetailsException,
    ResourceNotFoundError,
    StorageUnavailableError,
    UpstreamDegradedError,
    register_exception_handlers,
)

__all__ = [
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
