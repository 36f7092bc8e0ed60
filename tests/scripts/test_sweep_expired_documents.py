from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from repositories.sql import SQLDispatchRepository
from scripts import sweep_expired_documents
from services.dispatch.blob_store import FileSystemBlobStore
from shared.models.documents import MedicalDocument


def _document(document_id: str, expires_at: datetime) -> MedicalDocument:
    return MedicalDocument(
        id=document_id,
        emergency_id="e1",
        blob_key=f"emergencies/e1/{document_id}-scan.pdf",
        filename="scan.pdf",
        content_type="application/pdf",
        size_bytes=4,
        uploaded_by="p1",
        created_at=expires_at - timedelta(hours=1),
        expires_at=expires_at,
    )


def _seed(database_url: str, blob_root: Path) -> None:
    now = datetime.now(timezone.utc)

    async def _run() -> None:
        repository = SQLDispatchRepository(database_url)
        blobs = FileSystemBlobStore(blob_root)
        try:
            await repository.create_schema()
            for document in (_document("old", now - timedelta(minutes=5)), _document("live", now + timedelta(hours=1))):
                await repository.add_document(document)
                await blobs.upload(document.blob_key, b"%PDF", document.content_type)
        finally:
            await repository.dispose()

    asyncio.run(_run())


def test_main_sweeps_expired_documents(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}"
    blob_root = tmp_path / "blobs"
    _seed(database_url, blob_root)

    exit_code = sweep_expired_documents.main(
        ["--database-url", database_url, "--blob-root", str(blob_root), "--json"]
    )

    assert exit_code == 0
    printed = [line for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    assert json.loads(printed[-1]) == {"removed": 1}
    assert not (blob_root / "emergencies/e1/old-scan.pdf").exists()
    assert (blob_root / "emergencies/e1/live-scan.pdf").exists()

    assert sweep_expired_documents.main(["--database-url", database_url, "--blob-root", str(blob_root)]) == 0
    assert "Removed 0 expired document(s)" in capsys.readouterr().out.splitlines()


def test_main_requires_a_database(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = sweep_expired_documents.main(["--database-url", "", "--blob-root", str(tmp_path)])

    assert exit_code == 2
    assert "database URL is required" in capsys.readouterr().err
