"""
Pydantic Schemas for Request/Response Validation

The order submission body is validated here into a typed, trimmed value;
nothing downstream ever sees the raw JSON object.

Version: 1.0.0
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

from qr_notify.security.tokens import LOCATION_TOKEN_PATTERN, MAX_AUTH_TOKEN_LENGTH


MAX_TITLE_LENGTH = 100
MAX_MESSAGE_LENGTH = 1_024

REQUIRED_FIELDS_MESSAGE = "title, message, locationToken and authToken are required"

_LOCATION_TOKEN_RE = re.compile(LOCATION_TOKEN_PATTERN)


def is_valid_location_token(value: str) -> bool:
    return bool(_LOCATION_TOKEN_RE.match(value))


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class NotifyOrderRequest(BaseModel):
    """Order notification submitted by the guest's browser."""

    model_config = ConfigDict(frozen=True)

    title: StrictStr = Field(..., examples=["New order: Table 4"])
    message: StrictStr = Field(..., examples=["2x Espresso\n1x Croissant"])
    location_token: StrictStr = Field(..., alias="locationToken", examples=["table-4"])
    auth_token: StrictStr = Field(..., alias="authToken")

    @field_validator("title")
    @classmethod
    def trim_title(cls, v: str) -> str:
        v = v.strip()[:MAX_TITLE_LENGTH]
        if not v:
            raise ValueError("title and message are required")
        return v

    @field_validator("message")
    @classmethod
    def trim_message(cls, v: str) -> str:
        v = v.strip()[:MAX_MESSAGE_LENGTH]
        if not v:
            raise ValueError("title and message are required")
        return v

    @field_validator("location_token")
    @classmethod
    def validate_location_token(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_location_token(v):
            raise ValueError("Invalid locationToken")
        return v

    @field_validator("auth_token")
    @classmethod
    def validate_auth_token(cls, v: str) -> str:
        v = v.strip()
        if not v or len(v) > MAX_AUTH_TOKEN_LENGTH:
            raise ValueError("Invalid authToken")
        return v


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class NotifyTokenResponse(BaseModel):
    """Response after issuing an auth token."""
    ok: bool = True
    auth_token: str = Field(..., serialization_alias="authToken")
    expires_at_ms: int = Field(..., serialization_alias="expiresAtMs")


class NotifyOkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    """Standard error response."""
    ok: bool = False
    error: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    notification_service: str
    location_mode: str
    signing_configured: bool
    timestamp: datetime
    detail: Optional[str] = None
