"""
Security primitives for the notify endpoint: base64url codec, HMAC signer,
auth token service and replay guard.
"""

from qr_notify.security.signer import HmacSigner, SigningKeyCache, resolve_signing_secret
from qr_notify.security.tokens import (
    AuthTokenPayload,
    IssuedToken,
    NotifyTokenService,
    TokenVerification,
    compute_client_binding,
)
from qr_notify.security.replay import ReplayGuard

__all__ = [
    "HmacSigner",
    "SigningKeyCache",
    "resolve_signing_secret",
    "AuthTokenPayload",
    "IssuedToken",
    "NotifyTokenService",
    "TokenVerification",
    "compute_client_binding",
    "ReplayGuard",
]
