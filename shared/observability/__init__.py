"""Observability utilities shared across the dispatch services."""

from .logger import (
    configure_logging,
    generate_request_id,
    get_logger,
    get_request_id,
    request_context,
)
from .middleware import CorrelationIdMiddleware, RequestTimingMiddleware
from .audit import (
    AuditRepository,
    DispatchAudit,
    InMemoryAuditRepository,
    LogAuditRepository,
    get_audit_repository,
    record_dispatch_audit,
    set_audit_repository,
)

__all__ = [
    "AuditRepository",
    "CorrelationIdMiddleware",
    "DispatchAudit",
    "InMemoryAuditRepository",
    "LogAuditRepository",
    "RequestTimingMiddleware",
    "configure_logging",
    "generate_request_id",
    "get_audit_repository",
    "get_logger",
    "get_request_id",
    "record_dispatch_audit",
    "request_context",
    "set_audit_repository",
]
