"""Signed, short-lived capability tokens granting a view of one document."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Callable

from shared.http.errors import ConfigurationError, InvalidTokenError
from shared.models.users import Identity, Role

__all__ = ["DocumentTokenCodec", "TokenClaims", "b64url_decode", "b64url_encode"]


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


@dataclass(frozen=True, slots=True)
class TokenClaims:
    document_id: str
    user_id: str
    role: Role
    exp: int

    @property
    def identity(self) -> Identity:
        return Identity(id=self.user_id, role=self.role)


class DocumentTokenCodec:
    """Issues and verifies ``{payload}.{signature}`` tokens.

    The payload is base64url JSON ``{documentId, userId, role, exp}`` with
    ``exp`` in epoch seconds; the signature is HMAC-SHA256 over the encoded
    payload.
    """

    def __init__(
        self,
        secret: str | None,
        *,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret.encode("utf-8") if secret else None
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def _sign(self, payload_b64: str) -> bytes:
        if self._secret is None:
            raise ConfigurationError("documents.token_secret")
        return hmac.new(self._secret, payload_b64.encode("ascii"), hashlib.sha256).digest()

    def issue(self, document_id: str, user_id: str, role: Role | str, ttl_seconds: int | None = None) -> str:
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        payload = {
            "documentId": document_id,
            "userId": user_id,
            "role": Role(role).value,
            "exp": int(self._clock()) + ttl,
        }
        payload_b64 = b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{payload_b64}.{b64url_encode(self._sign(payload_b64))}"

    def verify(self, token: str) -> TokenClaims:
        """Return the claims or raise :class:`InvalidTokenError`."""

        payload_b64, separator, signature_b64 = (token or "").partition(".")
        if not token or not token.isascii():
            raise InvalidTokenError("malformed")
        if not separator or not payload_b64 or not signature_b64 or "." in signature_b64:
            raise InvalidTokenError("malformed")

        expected = self._sign(payload_b64)
        try:
            provided = b64url_decode(signature_b64)
        except (binascii.Error, ValueError) as exc:
            raise InvalidTokenError("malformed") from exc
        if not hmac.compare_digest(expected, provided):
            raise InvalidTokenError("bad_signature")

        try:
            payload = json.loads(b64url_decode(payload_b64).decode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise InvalidTokenError("malformed") from exc
        if not isinstance(payload, dict):
            raise InvalidTokenError("malformed")

        document_id = payload.get("documentId")
        user_id = payload.get("userId")
        role = payload.get("role")
        exp = payload.get("exp")
        if not document_id or not user_id or not role or not isinstance(exp, int) or isinstance(exp, bool):
            raise InvalidTokenError("missing_claims")
        try:
            parsed_role = Role(role)
        except ValueError as exc:
            raise InvalidTokenError("missing_claims") from exc
        if exp < int(self._clock()):
            raise InvalidTokenError("expired")
        return TokenClaims(document_id=str(document_id), user_id=str(user_id), role=parsed_role, exp=exp)
