"""
HMAC-SHA256 Signer

Signs and verifies the encoded auth-token payload. Keyed HMAC objects are
built once per distinct secret and copied for every operation, so the key
schedule is not recomputed per request.

The signing secret is either the explicit ``NOTIFY_SIGNING_SECRET`` or, when
that is unset, derived from the Pushover credentials.
"""

import hashlib
import hmac
import logging
from typing import Optional

from qr_notify.core.config import Settings

logger = logging.getLogger(__name__)


def resolve_signing_secret(settings: Settings) -> Optional[str]:
    """
    Resolve the secret used to sign auth tokens.

    Returns:
        The explicit secret if non-empty, else ``"<app_token>:<user_key>"``
        when both Pushover credentials are set, else None.
    """
    explicit = (settings.notify_signing_secret or "").strip()
    if explicit:
        return explicit

    if settings.pushover_app_token and settings.pushover_user_key:
        return f"{settings.pushover_app_token}:{settings.pushover_user_key}"

    return None


class SigningKeyCache:
    """Process-wide cache of keyed HMAC prototypes, one per secret value."""

    def __init__(self):
        self._keys: dict[str, "hmac.HMAC"] = {}

    def import_key(self, secret: str) -> "hmac.HMAC":
        key = self._keys.get(secret)
        if key is None:
            key = hmac.new(secret.encode("utf-8"), digestmod=hashlib.sha256)
            self._keys[secret] = key
        return key

    def invalidate(self, secret: Optional[str] = None) -> None:
        """Drop one cached key, or all of them (e.g. after secret rotation)."""
        if secret is None:
            self._keys.clear()
        else:
            self._keys.pop(secret, None)
        logger.debug("Signing key cache invalidated")

    def __len__(self) -> int:
        return len(self._keys)


class HmacSigner:
    """Signs byte strings with HMAC-SHA256."""

    def __init__(self, key_cache: Optional[SigningKeyCache] = None):
        self.key_cache = key_cache or SigningKeyCache()

    def sign(self, payload: bytes, secret: str) -> bytes:
        mac = self.key_cache.import_key(secret).copy()
        mac.update(payload)
        return mac.digest()

    def verify(self, payload: bytes, signature: bytes, secret: str) -> bool:
        """Constant-time comparison of ``signature`` with the expected MAC."""
        expected = self.sign(payload, secret)
        return hmac.compare_digest(expected, signature)
