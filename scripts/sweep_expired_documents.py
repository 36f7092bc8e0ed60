"""Utility script deleting medical documents whose expiry has passed."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Iterable

from repositories.sql import SQLDispatchRepository
from services.dispatch.blob_store import FileSystemBlobStore
from services.dispatch.sweeper import DocumentSweeper
from shared.config.settings import get_settings
from shared.observability.logger import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description=(
            "Remove expired documents (metadata rows and blobs) from the dispatch "
            "database and blob directory."
        )
    )
    parser.add_argument(
        "--database-url",
        dest="database_url",
        default=settings.storage.database_url,
        help="SQLAlchemy async URL of the dispatch database (default: DISPATCH_STORAGE_DATABASE_URL).",
    )
    parser.add_argument(
        "--blob-root",
        dest="blob_root",
        default=settings.blob_store.root_directory,
        help="Directory holding document blobs (default: DISPATCH_BLOBS_ROOT_DIRECTORY).",
    )
    parser.add_argument(
        "--batch-size",
        dest="batch_size",
        type=int,
        default=settings.documents.sweep_batch_size,
        help="Documents removed per batch.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Keep running and sweep every INTERVAL seconds instead of once.",
    )
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Print the result as a JSON object.",
    )
    return parser


async def _run_async(args: argparse.Namespace) -> int:
    if not args.database_url:
        print("A database URL is required (--database-url or DISPATCH_STORAGE_DATABASE_URL).", file=sys.stderr)
        return 2
    if not args.blob_root:
        print("A blob directory is required (--blob-root or DISPATCH_BLOBS_ROOT_DIRECTORY).", file=sys.stderr)
        return 2

    repository = SQLDispatchRepository(args.database_url)
    try:
        await repository.create_schema()
        sweeper = DocumentSweeper(repository, FileSystemBlobStore(args.blob_root), batch_size=args.batch_size)
        if args.interval:
            await sweeper.run_forever(args.interval)
            return 0
        removed = await sweeper.sweep_once()
    finally:
        await repository.dispose()

    if args.as_json:
        print(json.dumps({"removed": removed}))
    else:
        print(f"Removed {removed} expired document(s)")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    configure_logging(service_name="dispatch_sweeper")
    parser = _build_parser()
    parsed_args = parser.parse_args(None if argv is None else list(argv))
    try:
        return asyncio.run(_run_async(parsed_args))
    except KeyboardInterrupt:  # pragma: no cover - manual cancellation guard
        return 130
    except Exception as exc:  # pragma: no cover - surface script errors cleanly
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
