from __future__ import annotations

import json

import pytest

from services.dispatch.tokens import DocumentTokenCodec, b64url_decode, b64url_encode
from shared.http.errors import ConfigurationError, InvalidTokenError
from shared.models.users import Role


class _EpochClock:
    def __init__(self, now: float = 1_760_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def epoch() -> _EpochClock:
    return _EpochClock()


def test_issued_token_verifies_with_its_claims(epoch) -> None:
    codec = DocumentTokenCodec("s3cret", clock=epoch)

    claims = codec.verify(codec.issue("doc-1", "h1", Role.HOSPITAL))

    assert claims.document_id == "doc-1"
    assert claims.user_id == "h1"
    assert claims.role is Role.HOSPITAL
    assert claims.exp == int(epoch.now) + 300
    assert claims.identity.role is Role.HOSPITAL


def test_payload_is_base64url_json(epoch) -> None:
    token = DocumentTokenCodec("s3cret", clock=epoch).issue("doc-1", "p1", "patient", ttl_seconds=60)

    payload_b64, signature_b64 = token.split(".")
    payload = json.loads(b64url_decode(payload_b64))

    assert payload == {"documentId": "doc-1", "userId": "p1", "role": "patient", "exp": int(epoch.now) + 60}
    assert "=" not in token
    assert len(b64url_decode(signature_b64)) == 32


def test_token_expires_after_its_ttl(epoch) -> None:
    codec = DocumentTokenCodec("s3cret", ttl_seconds=300, clock=epoch)
    token = codec.issue("doc-1", "p1", Role.PATIENT)

    epoch.now += 300
    assert codec.verify(token).document_id == "doc-1"

    epoch.now += 1
    with pytest.raises(InvalidTokenError) as excinfo:
        codec.verify(token)
    assert excinfo.value.reason == "expired"


def test_token_signed_with_another_secret_is_rejected(epoch) -> None:
    token = DocumentTokenCodec("other", clock=epoch).issue("doc-1", "p1", Role.PATIENT)

    with pytest.raises(InvalidTokenError) as excinfo:
        DocumentTokenCodec("s3cret", clock=epoch).verify(token)
    assert excinfo.value.reason == "bad_signature"


def test_tampered_payload_is_rejected(epoch) -> None:
    codec = DocumentTokenCodec("s3cret", clock=epoch)
    _, signature = codec.issue("doc-1", "p1", Role.PATIENT).split(".")
    forged_payload = b64url_encode(
        json.dumps({"documentId": "doc-2", "userId": "p1", "role": "patient", "exp": 9_999_999_999}).encode()
    )

    with pytest.raises(InvalidTokenError) as excinfo:
        codec.verify(f"{forged_payload}.{signature}")
    assert excinfo.value.reason == "bad_signature"


@pytest.mark.parametrize("token", ["", "no-dot", "a.b.c", ".sig", "payload.", "\u00e9abc.def", "abc.d\u00e9f"])
def test_malformed_tokens_are_rejected(epoch, token) -> None:
    with pytest.raises(InvalidTokenError) as excinfo:
        DocumentTokenCodec("s3cret", clock=epoch).verify(token)
    assert excinfo.value.status_code == 401


def test_signed_payload_missing_claims_is_rejected(epoch) -> None:
    codec = DocumentTokenCodec("s3cret", clock=epoch)
    payload_b64 = b64url_encode(json.dumps({"documentId": "doc-1", "exp": int(epoch.now) + 60}).encode())
    signature = b64url_encode(codec._sign(payload_b64))

    with pytest.raises(InvalidTokenError) as excinfo:
        codec.verify(f"{payload_b64}.{signature}")
    assert excinfo.value.reason == "missing_claims"


def test_missing_secret_is_a_configuration_error(epoch) -> None:
    with pytest.raises(ConfigurationError):
        DocumentTokenCodec(None, clock=epoch).issue("doc-1", "p1", Role.PATIENT)
