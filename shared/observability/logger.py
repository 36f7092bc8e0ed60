"""Structured logging for the dispatch services (structlog routed into loguru)."""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from types import FrameType
from typing import Any, Iterator, Mapping

import structlog
from loguru import logger as loguru_logger

__all__ = [
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "get_request_id",
    "request_context",
]

_REQUEST_ID: ContextVar[str | None] = ContextVar("request_id", default=None)
_CONFIGURED: bool = False
_SERVICE_NAME: str | None = None


def _format_record(record: Mapping[str, Any]) -> str:
    """Render a loguru record as a single pipe-delimited line."""

    extra = record.get("extra") or {}
    service = extra.get("service", "-")
    request_id = extra.get("request_id") or "-"
    actor = extra.get("actor_id") or "-"
    message = record.get("message", "")
    if not isinstance(message, str):
        message = str(message)
    # loguru treats the returned string as a format template; structlog emits
    # JSON so braces must be escaped.
    message = message.replace("{", "{{").replace("}", "}}")
    return (
        f"{record['time'].isoformat()} | {record['level'].name:<8} | {service} | "
        f"{request_id} | {actor} | {message}\n"
    )


def _coerce_level(level: str | int) -> tuple[int, str]:
    if isinstance(level, int):
        numeric = level
    else:
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        numeric = resolved
    name = logging.getLevelName(numeric)
    return numeric, name if isinstance(name, str) else "INFO"


def get_request_id() -> str | None:
    """Return the request identifier bound to the current context, if any."""

    return _REQUEST_ID.get()


def generate_request_id() -> str:
    """Return a new opaque request identifier."""

    return uuid.uuid4().hex


class LoguruInterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records (uvicorn, httpx, sqlalchemy) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        level: str | int
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        bound = loguru_logger.bind(logger=record.name)
        request_id = get_request_id()
        if request_id:
            bound = bound.bind(request_id=request_id)
        bound.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_logging(*, service_name: str | None = None, level: str | int = "INFO") -> None:
    """Install the loguru sink and structlog pipeline once per process.

    Repeated calls only update the bound ``service_name``.
    """

    global _CONFIGURED, _SERVICE_NAME

    numeric_level, level_name = _coerce_level(level)

    if not _CONFIGURED:
        loguru_logger.remove()
        loguru_logger.add(
            sys.stdout,
            level=level_name,
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=_format_record,
        )
        logging.basicConfig(handlers=[LoguruInterceptHandler()], level=numeric_level, force=True)
        logging.captureWarnings(True)
        _configure_structlog()
        _CONFIGURED = True

    if service_name:
        _SERVICE_NAME = service_name
        loguru_logger.configure(extra={"service": service_name})
        structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger with the given ``name``."""

    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


@contextmanager
def request_context(
    request_id: str | None = None,
    *,
    actor_id: str | None = None,
    actor_role: str | None = None,
    **extra: Any,
) -> Iterator[str]:
    """Bind request and requester identity to every log line emitted in the block.

    Values bound before entering are restored on exit so nested contexts (for
    example the sweeper running inside a request) do not clobber each other.
    """

    extra.pop("request_id", None)
    rid = request_id or generate_request_id()
    token = _REQUEST_ID.set(rid)

    values: dict[str, Any] = dict(extra)
    if actor_id:
        values["actor_id"] = actor_id
    if actor_role:
        values["actor_role"] = actor_role
    if _SERVICE_NAME and "service" not in values:
        values["service"] = _SERVICE_NAME

    context_api = structlog.contextvars
    previous = context_api.get_contextvars()
    context_api.bind_contextvars(request_id=rid, **values)
    bound_keys = list(dict.fromkeys(["request_id", *values.keys()]))

    with loguru_logger.contextualize(request_id=rid, **values):
        try:
            yield rid
        finally:
            context_api.unbind_contextvars(*bound_keys)
            restore = {key: previous[key] for key in bound_keys if key in previous}
            if restore:
                context_api.bind_contextvars(**restore)
            _REQUEST_ID.reset(token)
