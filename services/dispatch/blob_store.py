"""Byte storage for uploaded documents."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol
from urllib.parse import quote, urlencode

from shared.config.settings import BlobStoreSettings

__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "FileSystemBlobStore",
    "InMemoryBlobStore",
    "StoredBlob",
    "UrlSigner",
    "build_blob_store",
]


class BlobNotFoundError(KeyError):
    """Raised by :meth:`BlobStore.read` for an unknown key."""


@dataclass(frozen=True, slots=True)
class StoredBlob:
    key: str
    data: bytes
    content_type: str


class BlobStore(Protocol):
    """Upload, read, delete and sign; deleting a missing key is not an error."""

    async def upload(self, key: str, data: bytes, content_type: str) -> StoredBlob: ...

    async def read(self, key: str) -> StoredBlob: ...

    async def delete(self, key: str) -> None: ...

    def sign_url(self, key: str, expires_in: int) -> str | None:
        """Return a short-lived URL for ``key``, or ``None`` when unsupported."""
        ...


class UrlSigner:
    """HMAC-signed ``?expires=&signature=`` links under a public base URL."""

    def __init__(self, secret: str, base_url: str, *, clock: Callable[[], float] = time.time) -> None:
        self._secret = secret.encode("utf-8")
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    def _signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def sign(self, key: str, expires_in: int) -> str:
        expires = int(self._clock()) + expires_in
        query = urlencode({"expires": expires, "signature": self._signature(key, expires)})
        return f"{self._base_url}/{quote(key)}?{query}"

    def verify(self, key: str, expires: int, signature: str) -> bool:
        if expires < int(self._clock()):
            return False
        return hmac.compare_digest(self._signature(key, expires), signature)


class InMemoryBlobStore:
    def __init__(self, *, signer: UrlSigner | None = None) -> None:
        self._blobs: dict[str, StoredBlob] = {}
        self._signer = signer

    def __contains__(self, key: object) -> bool:
        return key in self._blobs

    async def upload(self, key: str, data: bytes, content_type: str) -> StoredBlob:
        blob = StoredBlob(key=key, data=bytes(data), content_type=content_type)
        self._blobs[key] = blob
        return blob

    async def read(self, key: str) -> StoredBlob:
        try:
            return self._blobs[key]
        except KeyError as exc:
            raise BlobNotFoundError(key) from exc

    async def delete(self, key: str) -> None:
        self._blobs.pop(key, None)

    def sign_url(self, key: str, expires_in: int) -> str | None:
        return self._signer.sign(key, expires_in) if self._signer else None


class FileSystemBlobStore:
    """Blobs as files under ``root``; the content type is kept in a sidecar file."""

    def __init__(self, root: str | Path, *, signer: UrlSigner | None = None) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._signer = signer

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes the store root: {key!r}")
        return path

    async def upload(self, key: str, data: bytes, content_type: str) -> StoredBlob:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            path.with_name(path.name + ".type").write_text(content_type, encoding="utf-8")

        await asyncio.to_thread(_write)
        return StoredBlob(key=key, data=bytes(data), content_type=content_type)

    async def read(self, key: str) -> StoredBlob:
        path = self._path(key)

        def _read() -> StoredBlob:
            try:
                data = path.read_bytes()
            except FileNotFoundError as exc:
                raise BlobNotFoundError(key) from exc
            type_file = path.with_name(path.name + ".type")
            content_type = (
                type_file.read_text(encoding="utf-8") if type_file.exists() else "application/octet-stream"
            )
            return StoredBlob(key=key, data=data, content_type=content_type)

        return await asyncio.to_thread(_read)

    async def delete(self, key: str) -> None:
        path = self._path(key)

        def _delete() -> None:
            path.unlink(missing_ok=True)
            path.with_name(path.name + ".type").unlink(missing_ok=True)

        await asyncio.to_thread(_delete)

    def sign_url(self, key: str, expires_in: int) -> str | None:
        return self._signer.sign(key, expires_in) if self._signer else None


def build_blob_store(settings: BlobStoreSettings) -> BlobStore:
    signer = UrlSigner(settings.signing_secret, settings.public_base_url) if settings.signing_secret else None
    if settings.root_directory:
        return FileSystemBlobStore(settings.root_directory, signer=signer)
    return InMemoryBlobStore(signer=signer)
