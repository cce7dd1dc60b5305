# tests/test_tokens.py
"""Tests for auth token issuance, parsing and verification."""

from __future__ import annotations

import json

import pytest

from qr_notify.security.codec import b64url_decode, b64url_encode, join_token, split_token
from qr_notify.security.signer import HmacSigner, SigningKeyCache, resolve_signing_secret
from qr_notify.security.tokens import (
    MAX_AUTH_TOKEN_LENGTH,
    NotifyTokenService,
    compute_client_binding,
    generate_session_id,
)
from tests.conftest import TEST_SIGNING_SECRET, FakeClock, make_settings

LOCATION = "table-1"
TTL_SECONDS = 600


@pytest.fixture
def token_service(clock: FakeClock) -> NotifyTokenService:
    return NotifyTokenService(HmacSigner(SigningKeyCache()), TEST_SIGNING_SECRET, clock=clock)


@pytest.fixture
def session_id() -> str:
    return generate_session_id()


@pytest.fixture
def binding() -> str:
    return compute_client_binding("203.0.113.7", "Mozilla/5.0")


def _issue(service: NotifyTokenService, session_id: str, binding: str, location: str = LOCATION) -> str:
    issued = service.issue(location, session_id, binding, TTL_SECONDS)
    assert issued is not None
    return issued.token


def _resign(payload: dict, secret: str = TEST_SIGNING_SECRET) -> str:
    payload_encoded = b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signature = HmacSigner().sign(payload_encoded.encode("ascii"), secret)
    return join_token(payload_encoded, b64url_encode(signature))


# =============================================================================
# ISSUE / VERIFY
# =============================================================================

def test_issued_token_verifies(token_service, session_id, binding, clock):
    """A freshly issued token verifies with matching expectations."""
    issued = token_service.issue(LOCATION, session_id, binding, TTL_SECONDS)
    assert issued is not None
    assert issued.expires_at_ms == clock.now + TTL_SECONDS * 1000

    result = token_service.verify(issued.token, LOCATION, session_id, binding)
    assert result.ok
    assert result.payload.token_id == issued.payload.token_id
    assert result.payload.version == 1


def test_payload_uses_compact_keys(token_service, session_id, binding):
    """The encoded payload carries the short wire keys."""
    token = _issue(token_service, session_id, binding)
    payload = json.loads(b64url_decode(split_token(token)[0]))
    assert set(payload) == {"v", "loc", "exp", "sid", "jti", "cb"}
    assert payload["loc"] == LOCATION
    assert payload["sid"] == session_id
    assert payload["cb"] == binding


def test_each_issuance_gets_a_new_token_id(token_service, session_id, binding):
    """Two tokens for the same session still differ in jti."""
    first = token_service.issue(LOCATION, session_id, binding, TTL_SECONDS)
    second = token_service.issue(LOCATION, session_id, binding, TTL_SECONDS)
    assert first.payload.token_id != second.payload.token_id


def test_issue_without_secret_returns_none(clock, session_id, binding):
    """No secret means nothing can be issued or verified."""
    service = NotifyTokenService(HmacSigner(), None, clock=clock)
    assert not service.is_configured
    assert service.issue(LOCATION, session_id, binding, TTL_SECONDS) is None
    assert service.verify("a.b", LOCATION, session_id, binding).reason == "no_secret"


def test_expiry_boundary(token_service, session_id, binding, clock):
    """Valid one millisecond before exp, invalid at exactly exp."""
    token = _issue(token_service, session_id, binding)

    clock.advance(TTL_SECONDS * 1000 - 1)
    assert token_service.verify(token, LOCATION, session_id, binding).ok

    clock.advance(1)
    result = token_service.verify(token, LOCATION, session_id, binding)
    assert not result.ok
    assert result.reason == "expired"


def test_flipped_signature_byte_fails(token_service, session_id, binding):
    """Changing any signature byte invalidates the token."""
    token = _issue(token_service, session_id, binding)
    payload_encoded, signature_encoded = split_token(token)

    signature = bytearray(b64url_decode(signature_encoded))
    signature[0] ^= 0x01
    tampered = join_token(payload_encoded, b64url_encode(bytes(signature)))

    result = token_service.verify(tampered, LOCATION, session_id, binding)
    assert not result.ok
    assert result.reason == "bad_signature"


def test_tampered_payload_fails(token_service, session_id, binding):
    """A payload re-encoded with a later expiry no longer matches its signature."""
    token = _issue(token_service, session_id, binding)
    payload_encoded, signature_encoded = split_token(token)

    payload = json.loads(b64url_decode(payload_encoded))
    payload["exp"] += 3_600_000
    forged = join_token(
        b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")),
        signature_encoded,
    )

    result = token_service.verify(forged, LOCATION, session_id, binding)
    assert result.reason == "bad_signature"


def test_token_signed_with_other_secret_fails(token_service, session_id, binding, clock):
    """Tokens from another deployment are rejected."""
    other = NotifyTokenService(HmacSigner(), "another-secret", clock=clock)
    token = _issue(other, session_id, binding)
    assert token_service.verify(token, LOCATION, session_id, binding).reason == "bad_signature"


def test_location_mismatch(token_service, session_id, binding):
    """A token for one table cannot be used for another."""
    token = _issue(token_service, session_id, binding)
    result = token_service.verify(token, "table-2", session_id, binding)
    assert result.reason == "location_mismatch"


def test_session_mismatch(token_service, session_id, binding):
    """A token is useless without its session cookie."""
    token = _issue(token_service, session_id, binding)
    result = token_service.verify(token, LOCATION, generate_session_id(), binding)
    assert result.reason == "session_mismatch"


def test_binding_mismatch(token_service, session_id, binding):
    """A token is useless from another client fingerprint."""
    token = _issue(token_service, session_id, binding)
    other_binding = compute_client_binding("198.51.100.1", "Mozilla/5.0")
    result = token_service.verify(token, LOCATION, session_id, other_binding)
    assert result.reason == "binding_mismatch"


def test_location_checked_before_expiry(token_service, session_id, binding, clock):
    """Checks short-circuit in order: location comes before expiry."""
    token = _issue(token_service, session_id, binding)
    clock.advance(TTL_SECONDS * 1000)
    assert token_service.verify(token, "table-2", session_id, binding).reason == "location_mismatch"


# =============================================================================
# PARSE
# =============================================================================

@pytest.mark.parametrize(
    "token",
    [
        "",
        "no-dot",
        "a.b.c",
        "!!!.abc",
        "x" * (MAX_AUTH_TOKEN_LENGTH + 1),
        b64url_encode(b"not json") + ".abc",
        b64url_encode(b"[1, 2]") + ".abc",
        b64url_encode(b"\xff\xfe") + ".abc",
    ],
)
def test_parse_rejects_malformed_tokens(token_service, token):
    """Structural garbage never reaches signature verification."""
    assert token_service.parse(token) is None


def test_verify_reports_malformed(token_service, session_id, binding):
    """Malformed tokens fail with reason 'malformed'."""
    assert token_service.verify("garbage", LOCATION, session_id, binding).reason == "malformed"


@pytest.mark.parametrize(
    "change",
    [
        {"v": 2},
        {"v": True},
        {"v": "1"},
        {"loc": "bad location"},
        {"loc": 5},
        {"sid": "short"},
        {"jti": "x" * 129},
        {"cb": "ABCDEF"},
        {"exp": "1700000600000"},
        {"exp": None},
    ],
)
def test_parse_rejects_invalid_fields(token_service, session_id, binding, change):
    """Every payload field is validated even when the signature is genuine."""
    token = _issue(token_service, session_id, binding)
    payload = json.loads(b64url_decode(split_token(token)[0]))
    payload.update(change)
    assert token_service.parse(_resign(payload)) is None


def test_parse_floors_fractional_expiry(token_service, session_id, binding):
    """A fractional exp is floored to whole milliseconds."""
    token = _issue(token_service, session_id, binding)
    payload = json.loads(b64url_decode(split_token(token)[0]))
    expires_at_ms = payload["exp"]
    payload["exp"] = expires_at_ms + 0.75
    parsed = token_service.parse(_resign(payload))
    assert parsed is not None
    assert parsed.payload.expires_at_ms == expires_at_ms


def test_parse_ignores_unknown_keys(token_service, session_id, binding):
    """Extra payload keys are tolerated."""
    token = _issue(token_service, session_id, binding)
    payload = json.loads(b64url_decode(split_token(token)[0]))
    payload["extra"] = "ignored"
    assert token_service.verify(_resign(payload), LOCATION, session_id, binding).ok


# =============================================================================
# SIGNER
# =============================================================================

def test_client_binding_is_sha256_hex():
    """Binding is lowercase hex SHA-256 of 'ip\\nua'."""
    binding = compute_client_binding("1.2.3.4", "ua")
    assert len(binding) == 64
    assert binding == binding.lower()
    assert binding != compute_client_binding("1.2.3.4", "ua2")


def test_key_cache_reuses_keys_per_secret():
    """One keyed prototype per distinct secret."""
    cache = SigningKeyCache()
    first = cache.import_key("secret-a")
    assert cache.import_key("secret-a") is first
    cache.import_key("secret-b")
    assert len(cache) == 2

    cache.invalidate("secret-a")
    assert len(cache) == 1
    assert cache.import_key("secret-a") is not first

    cache.invalidate()
    assert len(cache) == 0


def test_signer_verify():
    """Signatures verify for the same payload and secret only."""
    signer = HmacSigner()
    signature = signer.sign(b"payload", "secret")
    assert len(signature) == 32
    assert signer.verify(b"payload", signature, "secret")
    assert not signer.verify(b"payload2", signature, "secret")
    assert not signer.verify(b"payload", signature, "other")


def test_resolve_signing_secret_prefers_explicit():
    """An explicit secret wins over Pushover credentials."""
    settings = make_settings(
        notify_signing_secret="  explicit  ",
        pushover_app_token="app",
        pushover_user_key="user",
    )
    assert resolve_signing_secret(settings) == "explicit"


def test_resolve_signing_secret_derives_from_pushover():
    """Without an explicit secret, Pushover credentials are combined."""
    settings = make_settings(notify_signing_secret="   ", pushover_app_token="app", pushover_user_key="user")
    assert resolve_signing_secret(settings) == "app:user"


def test_resolve_signing_secret_missing():
    """No secret and incomplete credentials resolve to None."""
    settings = make_settings(notify_signing_secret=None, pushover_app_token="app")
    assert resolve_signing_secret(settings) is None
