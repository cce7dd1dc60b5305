"""
Request Admission Pipeline

Cheap checks applied before any token or provider work:
    1. Origin allow-list (Origin header, falling back to Referer)
    2. Fetch metadata (Sec-Fetch-Site / Sec-Fetch-Mode) on state-changing routes
    3. Per-IP fixed window rate limit
    4. Content-Type and size-bounded JSON body
    5. Field validation of the order payload

Each gate raises a ``NotifyError`` subclass; the message on the exception is
safe to show to the client.

Version: 1.0.0
"""

import json
import logging
from typing import Callable, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError
from starlette.requests import ClientDisconnect, Request

from qr_notify.core.config import Settings
from qr_notify.core.errors import (
    CrossSiteRequest,
    ForbiddenOrigin,
    PayloadTooLarge,
    RateLimited,
    UnsupportedMediaType,
    ValidationFailed,
)
from qr_notify.schemas import NotifyOrderRequest, REQUIRED_FIELDS_MESSAGE
from qr_notify.security.tokens import now_ms

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_MS = 60_000
RATE_LIMIT_SWEEP_THRESHOLD = 5_000

ALLOWED_FETCH_SITES = {"same-origin"}
ALLOWED_FETCH_MODES = {"cors", "same-origin"}

_DEFAULT_PORTS = {"http": 80, "https": 443}


# =============================================================================
# ORIGIN
# =============================================================================

def normalize_origin(value: Optional[str]) -> Optional[str]:
    """
    Reduce a URL or origin string to ``scheme://host[:port]``.

    Returns None for anything that is not an absolute http(s) URL
    (including the literal ``null`` origin browsers send for opaque contexts).
    """
    if not value:
        return None
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme not in _DEFAULT_PORTS or not host:
        return None

    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def site_origin(request: Request) -> str:
    """Origin this server was reached on."""
    return normalize_origin(str(request.url)) or f"{request.url.scheme}://{request.url.netloc}"


def resolve_request_origin(request: Request) -> Optional[str]:
    direct = request.headers.get("origin")
    if direct:
        return normalize_origin(direct)

    referer = request.headers.get("referer")
    if not referer:
        return None
    return normalize_origin(referer)


def parse_allowed_origins(request: Request, settings: Settings) -> set[str]:
    configured = {
        origin
        for origin in (normalize_origin(o) for o in settings.allowed_origins_list)
        if origin
    }
    # Same-origin only when no explicit allow-list is configured.
    if not configured:
        return {site_origin(request)}
    return configured


def get_allowed_origin(request: Request, settings: Settings) -> Optional[str]:
    """Return the caller's origin if it is allowed, else None."""
    request_origin = resolve_request_origin(request)
    if not request_origin:
        return None

    if request_origin in parse_allowed_origins(request, settings):
        return request_origin
    return None


def admit_origin(request: Request, settings: Settings) -> str:
    """
    Gate 1: reject requests from origins outside the allow-list.

    The allowed origin is stored on ``request.state`` so error responses
    raised further down the pipeline still carry CORS headers.
    """
    allowed_origin = get_allowed_origin(request, settings)
    if not allowed_origin:
        logger.info(f"Forbidden origin: {request.headers.get('origin') or request.headers.get('referer')!r}")
        raise ForbiddenOrigin()
    request.state.allowed_origin = allowed_origin
    return allowed_origin


def build_cors_headers(allowed_origin: Optional[str]) -> dict[str, str]:
    headers = {
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": "86400",
    }

    if allowed_origin:
        headers["Access-Control-Allow-Origin"] = allowed_origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"

    return headers


# =============================================================================
# FETCH METADATA
# =============================================================================

def check_fetch_metadata(request: Request) -> None:
    """Gate 2: browsers label cross-site requests; absent headers are tolerated."""
    fetch_site = request.headers.get("sec-fetch-site")
    if fetch_site is not None and fetch_site.lower() not in ALLOWED_FETCH_SITES:
        logger.info(f"Blocked cross-site request (Sec-Fetch-Site={fetch_site})")
        raise CrossSiteRequest()

    fetch_mode = request.headers.get("sec-fetch-mode")
    if fetch_mode is not None and fetch_mode.lower() not in ALLOWED_FETCH_MODES:
        logger.info(f"Blocked cross-site request (Sec-Fetch-Mode={fetch_mode})")
        raise CrossSiteRequest()


# =============================================================================
# RATE LIMITING
# =============================================================================

def get_client_ip(request: Request) -> str:
    connecting_ip = (request.headers.get("cf-connecting-ip") or "").strip()
    if connecting_ip:
        return connecting_ip

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_ip = forwarded_for.split(",")[0].strip()
        if first_ip:
            return first_ip

    return "unknown"


class RateLimiter:
    """
    Per-key request counter over a 60 second window.

    A bucket starts with the first request after the previous window
    elapsed; requests beyond ``limit`` inside the window are refused.
    Stale buckets are swept once the table grows past ``max_buckets``.
    """

    def __init__(
        self,
        limit: int,
        window_ms: int = RATE_LIMIT_WINDOW_MS,
        max_buckets: int = RATE_LIMIT_SWEEP_THRESHOLD,
        clock: Callable[[], int] = now_ms,
    ):
        self.limit = limit
        self.window_ms = window_ms
        self.max_buckets = max_buckets
        self.clock = clock
        self._buckets: dict[str, list[int]] = {}

    def is_limited(self, key: str) -> bool:
        now = self.clock()
        bucket = self._buckets.get(key)

        if bucket is None or now - bucket[1] >= self.window_ms:
            self._buckets[key] = [1, now]
            self._sweep_if_needed(now)
            return False

        if bucket[0] >= self.limit:
            return True

        bucket[0] += 1
        return False

    def _sweep_if_needed(self, now: int) -> None:
        if len(self._buckets) <= self.max_buckets:
            return
        stale = [k for k, (_, started) in self._buckets.items() if now - started >= self.window_ms]
        for k in stale:
            del self._buckets[k]

    def __len__(self) -> int:
        return len(self._buckets)


def enforce_rate_limit(request: Request, limiter: RateLimiter) -> str:
    """Gate 3: returns the client IP the request was counted against."""
    client_ip = get_client_ip(request)
    if limiter.is_limited(client_ip):
        logger.warning(f"Rate limit exceeded for {client_ip}")
        raise RateLimited()
    return client_ip


# =============================================================================
# BODY
# =============================================================================

def _read_content_length(request: Request) -> Optional[int]:
    value = request.headers.get("content-length")
    if not value:
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


async def read_json_body(request: Request, max_bytes: int) -> dict:
    """
    Gate 4: read at most ``max_bytes`` of JSON object body.

    The declared Content-Length is checked first; the streamed byte count
    is enforced as well, so a missing or lying header does not help.
    """
    content_type = request.headers.get("content-type") or ""
    if "application/json" not in content_type.lower():
        raise UnsupportedMediaType()

    declared = _read_content_length(request)
    if declared is not None and declared > max_bytes:
        raise PayloadTooLarge()

    chunks: list[bytes] = []
    received = 0
    try:
        async for chunk in request.stream():
            received += len(chunk)
            if received > max_bytes:
                raise PayloadTooLarge()
            chunks.append(chunk)
    except ClientDisconnect:
        raise ValidationFailed("Invalid request body")

    try:
        parsed = json.loads(b"".join(chunks).decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError):
        raise ValidationFailed("Invalid JSON body")

    if not isinstance(parsed, dict):
        raise ValidationFailed("Invalid JSON body")

    return parsed


# =============================================================================
# FIELDS
# =============================================================================

def parse_notify_order(body: dict) -> NotifyOrderRequest:
    """Gate 5: validate the order fields and report the first problem found."""
    try:
        return NotifyOrderRequest.model_validate(body)
    except ValidationError as e:
        errors = e.errors()
        if any(err["type"] in ("missing", "string_type") for err in errors):
            raise ValidationFailed(REQUIRED_FIELDS_MESSAGE)

        for err in errors:
            ctx_error = (err.get("ctx") or {}).get("error")
            if ctx_error is not None:
                raise ValidationFailed(str(ctx_error))

        raise ValidationFailed("Invalid request body")
