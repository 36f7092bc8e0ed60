"""FastAPI middleware that ties HTTP requests to the structured log context."""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .logger import generate_request_id, get_logger, request_context

__all__ = ["CorrelationIdMiddleware", "RequestTimingMiddleware"]

_MAX_REQUEST_ID_LENGTH = 128


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse or mint an ``X-Request-ID`` and bind it with the requester identity.

    The identity headers are only used for log enrichment here; authorization
    happens in the route dependencies.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        header_name: str = "X-Request-ID",
        user_id_header: str = "X-User-Id",
        user_role_header: str = "X-User-Role",
    ) -> None:
        super().__init__(app)
        self.header_name = header_name
        self.user_id_header = user_id_header
        self.user_role_header = user_role_header

    def _resolve_request_id(self, request: Request) -> str:
        for header in (self.header_name, "X-Correlation-ID"):
            value = (request.headers.get(header) or "").strip()
            if value:
                return value[:_MAX_REQUEST_ID_LENGTH]
        return generate_request_id()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = self._resolve_request_id(request)
        request.state.request_id = request_id
        actor_id = (request.headers.get(self.user_id_header) or "").strip() or None
        actor_role = (request.headers.get(self.user_role_header) or "").strip() or None

        with request_context(request_id=request_id, actor_id=actor_id, actor_role=actor_role):
            response = await call_next(request)

        response.headers.setdefault(self.header_name, request_id)
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log one ``http_request_completed`` event per request with its latency."""

    def __init__(self, app: ASGIApp, *, header_name: str = "X-Response-Time") -> None:
        super().__init__(app)
        self._header_name = header_name
        self._logger = get_logger("http")

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._logger.bind(
                method=request.method,
                path=request.url.path,
                duration_ms=(time.perf_counter() - start) * 1000.0,
            ).exception("http_request_failed")
            raise

        duration_ms = (time.perf_counter() - start) * 1000.0
        if self._header_name:
            response.headers[self._header_name] = f"{duration_ms / 1000.0:.6f}s"
        self._logger.bind(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        ).info("http_request_completed")
        return response
