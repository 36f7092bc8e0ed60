"""Tests for the shared observability logging helpers."""

from __future__ import annotations

from typing import Iterator

import pytest
import structlog

from shared.observability import logger as logger_module
from shared.observability.audit import InMemoryAuditRepository, LogAuditRepository, record_dispatch_audit


@pytest.fixture(autouse=True)
def _clean_context() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_request_context_preserves_service_binding() -> None:
    logger_module.configure_logging(service_name="test-service")
    assert structlog.contextvars.get_contextvars()["service"] == "test-service"

    with logger_module.request_context():
        pass

    assert structlog.contextvars.get_contextvars()["service"] == "test-service"


def test_request_context_restores_existing_values() -> None:
    logger_module.configure_logging(service_name="outer-service")
    structlog.contextvars.bind_contextvars(request_id="outer", custom="value")

    with logger_module.request_context(actor_id="h1", actor_role="hospital"):
        inner = structlog.contextvars.get_contextvars()
        assert inner["actor_id"] == "h1"
        assert inner["request_id"] != "outer"

    context = structlog.contextvars.get_contextvars()
    assert context["service"] == "outer-service"
    assert context["request_id"] == "outer"
    assert context["custom"] == "value"
    assert "actor_id" not in context


def test_request_context_sets_request_id_for_its_block() -> None:
    with logger_module.request_context(request_id="req-42") as request_id:
        assert request_id == "req-42"
        assert logger_module.get_request_id() == "req-42"

    assert logger_module.get_request_id() is None


@pytest.mark.anyio("asyncio")
async def test_audit_entries_pick_up_the_request_context() -> None:
    repository = InMemoryAuditRepository()

    with logger_module.request_context(request_id="req-7", actor_id="p1", actor_role="patient"):
        entry = await record_dispatch_audit(
            "document_viewed", emergency_id="e1", resource_id="doc-1", repository=repository
        )

    assert repository.events() == ["document_viewed"]
    assert entry.actor_id == "p1"
    assert entry.request_id == "req-7"
    assert entry.to_dict()["emergencyId"] == "e1"


class _RecordingLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, dict]] = []

    def info(self, event: str, **fields) -> None:
        self.records.append((event, fields))


@pytest.mark.anyio("asyncio")
async def test_log_audit_sink_emits_one_dispatch_audit_event() -> None:
    sink = _RecordingLogger()

    await record_dispatch_audit(
        "case_accepted",
        actor_id="h1",
        actor_role="hospital",
        emergency_id="e1",
        outcome="assigned",
        repository=LogAuditRepository(logger=sink),
    )

    [(event, fields)] = sink.records
    assert event == "dispatch_audit"
    assert fields["auditEvent"] == "case_accepted"
    assert fields["actorId"] == "h1"
    assert fields["outcome"] == "assigned"
