"""Audit trail for state-changing dispatch operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from .logger import get_logger, get_request_id

__all__ = [
    "AuditRepository",
    "DispatchAudit",
    "InMemoryAuditRepository",
    "LogAuditRepository",
    "get_audit_repository",
    "record_dispatch_audit",
    "set_audit_repository",
]


@dataclass(slots=True)
class DispatchAudit:
    """One auditable dispatch event, e.g. ``emergency_triggered`` or ``document_viewed``."""

    event: str
    actor_id: str | None = None
    actor_role: str | None = None
    emergency_id: str | None = None
    resource_id: str | None = None
    outcome: str | None = None
    request_id: str | None = None
    service: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "auditEvent": self.event,
            "actorId": self.actor_id,
            "actorRole": self.actor_role,
            "emergencyId": self.emergency_id,
            "resourceId": self.resource_id,
            "outcome": self.outcome,
            "requestId": self.request_id,
            "service": self.service,
            "metadata": dict(self.metadata),
            "createdAt": self.created_at.isoformat(),
        }


class AuditRepository(Protocol):
    """Destination for audit entries."""

    async def persist(self, audit: DispatchAudit) -> None:  # pragma: no cover - interface definition
        """Persist ``audit`` to the underlying storage backend."""


class LogAuditRepository:
    """Write audit entries as ``dispatch_audit`` log events."""

    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else get_logger("audit")

    async def persist(self, audit: DispatchAudit) -> None:
        self._logger.info("dispatch_audit", **audit.to_dict())


class InMemoryAuditRepository:
    """Collect audit entries in a list; used by tests and local tooling."""

    def __init__(self) -> None:
        self.entries: list[DispatchAudit] = []

    async def persist(self, audit: DispatchAudit) -> None:
        self.entries.append(audit)

    def events(self) -> list[str]:
        return [entry.event for entry in self.entries]


_DEFAULT_REPOSITORY: AuditRepository | None = None


def get_audit_repository() -> AuditRepository:
    """Return the process-wide audit repository."""

    global _DEFAULT_REPOSITORY
    if _DEFAULT_REPOSITORY is None:
        _DEFAULT_REPOSITORY = LogAuditRepository()
    return _DEFAULT_REPOSITORY


def set_audit_repository(repository: AuditRepository | None) -> None:
    """Replace the process-wide audit repository; ``None`` restores the default."""

    global _DEFAULT_REPOSITORY
    _DEFAULT_REPOSITORY = repository


async def record_dispatch_audit(
    event: str,
    *,
    actor_id: str | None = None,
    actor_role: str | None = None,
    emergency_id: str | None = None,
    resource_id: str | None = None,
    outcome: str | None = None,
    metadata: dict[str, Any] | None = None,
    repository: AuditRepository | None = None,
    request_id: str | None = None,
    service: str | None = None,
) -> DispatchAudit:
    """Build an audit entry from the current log context and persist it."""

    repo = repository or get_audit_repository()
    context = structlog.contextvars.get_contextvars()

    entry = DispatchAudit(
        event=event,
        actor_id=actor_id or context.get("actor_id"),
        actor_role=actor_role or context.get("actor_role"),
        emergency_id=emergency_id,
        resource_id=resource_id,
        outcome=outcome,
        request_id=request_id or get_request_id(),
        service=service or context.get("service"),
        metadata=dict(metadata or {}),
    )

    await repo.persist(entry)
    return entry
