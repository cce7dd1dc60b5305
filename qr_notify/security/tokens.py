"""
Notify Auth Token Service

Issues and verifies the signed, single-use tokens that authorize an order
notification for one location.

Token format:
    <base64url(json payload)>.<base64url(hmac-sha256 over the encoded payload)>

Payload keys:
    v    format version (always 1)
    loc  location token the order is for
    exp  expiry, epoch milliseconds
    sid  session id, mirrored in the HttpOnly session cookie
    jti  per-issuance token id, the unit of replay detection
    cb   client binding: sha256 hex of client IP + user agent

Verification checks location, session, binding, expiry and finally the
signature, stopping at the first mismatch. Callers must treat every failure
the same way; ``TokenVerification.reason`` exists for server-side logs only.

Version: 1.0.0
"""

import hashlib
import hmac
import json
import math
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator

from qr_notify.security.codec import b64url_decode, b64url_encode, join_token, split_token
from qr_notify.security.signer import HmacSigner

TOKEN_VERSION = 1

LOCATION_TOKEN_PATTERN = r"^[A-Za-z0-9_-]{1,80}$"
SAFE_ID_PATTERN = r"^[A-Za-z0-9_-]{16,128}$"
CLIENT_BINDING_PATTERN = r"^[a-f0-9]{64}$"

MAX_AUTH_TOKEN_LENGTH = 2_048


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_session_id() -> str:
    return secrets.token_urlsafe(24)


def generate_token_id() -> str:
    return secrets.token_urlsafe(24)


def _same(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def compute_client_binding(client_ip: str, user_agent: str) -> str:
    """Fingerprint the caller so a stolen token is useless from another client."""
    material = f"{client_ip}\n{user_agent}".encode("utf-8")
    return hashlib.sha256(material).hexdigest()


class AuthTokenPayload(BaseModel):
    """Validated token payload. Unknown keys are ignored, known keys are strict."""

    model_config = ConfigDict(frozen=True)

    version: Literal[1] = Field(alias="v")
    location_token: StrictStr = Field(alias="loc", pattern=LOCATION_TOKEN_PATTERN)
    expires_at_ms: int = Field(alias="exp")
    session_id: StrictStr = Field(alias="sid", pattern=SAFE_ID_PATTERN)
    token_id: StrictStr = Field(alias="jti", pattern=SAFE_ID_PATTERN)
    client_binding: StrictStr = Field(alias="cb", pattern=CLIENT_BINDING_PATTERN)

    @field_validator("version", mode="before")
    @classmethod
    def strict_version(cls, v: Any) -> Any:
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError("version must be an integer")
        return v

    @field_validator("expires_at_ms", mode="before")
    @classmethod
    def finite_number(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("exp must be a number")
        if not math.isfinite(v):
            raise ValueError("exp must be finite")
        return math.floor(v)

    def encode(self) -> str:
        raw = json.dumps(
            self.model_dump(by_alias=True),
            separators=(",", ":"),
        ).encode("utf-8")
        return b64url_encode(raw)


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token and its absolute expiry."""
    token: str
    expires_at_ms: int
    payload: AuthTokenPayload


@dataclass(frozen=True)
class ParsedToken:
    """Structurally valid token; the signature has NOT been checked yet."""
    payload_encoded: str
    signature_encoded: str
    payload: AuthTokenPayload


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of ``NotifyTokenService.verify``."""
    ok: bool
    payload: Optional[AuthTokenPayload] = None
    reason: Optional[str] = None


class NotifyTokenService:
    """
    Issues and verifies notify auth tokens.

    Args:
        signer: HMAC signer (holds the signing-key cache)
        secret: Resolved signing secret; None disables issuance and verification
        clock: Returns the current epoch time in milliseconds
    """

    def __init__(
        self,
        signer: HmacSigner,
        secret: Optional[str],
        clock: Callable[[], int] = now_ms,
    ):
        self.signer = signer
        self.secret = secret
        self.clock = clock

    @property
    def is_configured(self) -> bool:
        return bool(self.secret)

    def issue(
        self,
        location_token: str,
        session_id: str,
        client_binding: str,
        ttl_seconds: int,
    ) -> Optional[IssuedToken]:
        """Sign a new token, or return None when no signing secret is configured."""
        if not self.secret:
            return None

        expires_at_ms = self.clock() + ttl_seconds * 1000
        payload = AuthTokenPayload.model_validate({
            "v": TOKEN_VERSION,
            "loc": location_token,
            "exp": expires_at_ms,
            "sid": session_id,
            "jti": generate_token_id(),
            "cb": client_binding,
        })
        payload_encoded = payload.encode()
        signature = self.signer.sign(payload_encoded.encode("ascii"), self.secret)

        return IssuedToken(
            token=join_token(payload_encoded, b64url_encode(signature)),
            expires_at_ms=expires_at_ms,
            payload=payload,
        )

    def parse(self, token: str) -> Optional[ParsedToken]:
        """Decode and schema-check a token without trusting it."""
        if not isinstance(token, str) or len(token) > MAX_AUTH_TOKEN_LENGTH:
            return None

        segments = split_token(token)
        if segments is None:
            return None
        payload_encoded, signature_encoded = segments

        payload_bytes = b64url_decode(payload_encoded)
        if payload_bytes is None:
            return None

        try:
            raw = json.loads(payload_bytes.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None

        if not isinstance(raw, dict):
            return None

        try:
            payload = AuthTokenPayload.model_validate(raw)
        except ValidationError:
            return None

        return ParsedToken(
            payload_encoded=payload_encoded,
            signature_encoded=signature_encoded,
            payload=payload,
        )

    def verify(
        self,
        token: str,
        expected_location_token: str,
        expected_session_id: str,
        expected_client_binding: str,
    ) -> TokenVerification:
        if not self.secret:
            return TokenVerification(ok=False, reason="no_secret")

        parsed = self.parse(token)
        if parsed is None:
            return TokenVerification(ok=False, reason="malformed")

        payload = parsed.payload

        if payload.location_token != expected_location_token:
            return TokenVerification(ok=False, reason="location_mismatch")

        if not _same(payload.session_id, expected_session_id):
            return TokenVerification(ok=False, reason="session_mismatch")

        if not _same(payload.client_binding, expected_client_binding):
            return TokenVerification(ok=False, reason="binding_mismatch")

        if payload.expires_at_ms <= self.clock():
            return TokenVerification(ok=False, reason="expired")

        signature = b64url_decode(parsed.signature_encoded)
        if signature is None:
            return TokenVerification(ok=False, reason="bad_signature")

        if not self.signer.verify(parsed.payload_encoded.encode("ascii"), signature, self.secret):
            return TokenVerification(ok=False, reason="bad_signature")

        return TokenVerification(ok=True, payload=payload)
