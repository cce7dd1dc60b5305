"""Base64url helpers for the ``<payload>.<signature>`` auth token format."""

import base64
import binascii
import re
from typing import Optional

TOKEN_SEPARATOR = "."

_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> Optional[bytes]:
    """Decode unpadded base64url; returns None instead of raising on bad input."""
    if not isinstance(value, str) or not _B64URL_RE.match(value):
        return None
    if len(value) % 4 == 1:
        return None
    padding = "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(value + padding)
    except (binascii.Error, ValueError):
        return None


def split_token(token: str) -> Optional[tuple[str, str]]:
    """Split ``payload.signature``; anything but two non-empty segments is rejected."""
    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def join_token(payload_encoded: str, signature_encoded: str) -> str:
    return f"{payload_encoded}{TOKEN_SEPARATOR}{signature_encoded}"
