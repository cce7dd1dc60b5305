# tests/test_admission.py
"""Tests for the request admission gates."""

from __future__ import annotations

import json
from collections.abc import Iterable

import pytest
from starlette.requests import Request

from qr_notify.core.errors import (
    CrossSiteRequest,
    ForbiddenOrigin,
    PayloadTooLarge,
    RateLimited,
    UnsupportedMediaType,
    ValidationFailed,
)
from qr_notify.schemas import MAX_MESSAGE_LENGTH, MAX_TITLE_LENGTH, REQUIRED_FIELDS_MESSAGE
from qr_notify.services.admission import (
    RateLimiter,
    admit_origin,
    check_fetch_metadata,
    enforce_rate_limit,
    get_client_ip,
    normalize_origin,
    parse_notify_order,
    read_json_body,
)
from tests.conftest import FakeClock, make_settings


def make_request(
    headers: dict[str, str] | None = None,
    chunks: Iterable[bytes] = (),
    method: str = "POST",
    disconnect: bool = False,
) -> Request:
    """Raw starlette request whose body arrives in the given chunks."""
    raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": "/api/notify",
        "raw_path": b"/api/notify",
        "root_path": "",
        "query_string": b"",
        "headers": raw_headers,
        "server": ("testserver", 80),
        "client": ("127.0.0.1", 50000),
    }
    messages = [{"type": "http.request", "body": chunk, "more_body": True} for chunk in chunks]
    if disconnect:
        messages.append({"type": "http.disconnect"})
    else:
        messages.append({"type": "http.request", "body": b"", "more_body": False})

    async def receive():
        return messages.pop(0)

    return Request(scope, receive)


JSON_HEADERS = {"content-type": "application/json"}


# =============================================================================
# ORIGIN
# =============================================================================

@pytest.mark.parametrize(
    "value, expected",
    [
        ("https://Menu.Example.com/path?q=1", "https://menu.example.com"),
        ("https://menu.example.com:443", "https://menu.example.com"),
        ("http://localhost:8788/", "http://localhost:8788"),
        ("null", None),
        ("ftp://example.com", None),
        ("not a url", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_origin(value, expected):
    """Origins are reduced to scheme://host[:port]."""
    assert normalize_origin(value) == expected


def test_same_origin_allowed_by_default():
    """Without ALLOWED_ORIGINS only the site's own origin passes."""
    settings = make_settings()
    request = make_request({"origin": "http://testserver"})
    assert admit_origin(request, settings) == "http://testserver"
    assert request.state.allowed_origin == "http://testserver"

    with pytest.raises(ForbiddenOrigin):
        admit_origin(make_request({"origin": "https://evil.example"}), settings)


def test_referer_used_when_origin_missing():
    """The Referer's origin stands in for a missing Origin header."""
    request = make_request({"referer": "http://testserver/menu?table=1"})
    assert admit_origin(request, make_settings()) == "http://testserver"


def test_missing_origin_and_referer_rejected():
    """Requests that identify no origin are refused."""
    with pytest.raises(ForbiddenOrigin) as exc_info:
        admit_origin(make_request(), make_settings())
    assert exc_info.value.status_code == 403
    assert exc_info.value.public_message == "Forbidden origin"


def test_configured_allow_list_replaces_same_origin():
    """An explicit allow-list is normalized and used instead of same-origin."""
    settings = make_settings(allowed_origins="https://menu.example.com/, https://staging.example.com:8443")
    assert admit_origin(make_request({"origin": "https://menu.example.com"}), settings)
    assert admit_origin(make_request({"origin": "https://staging.example.com:8443"}), settings)

    with pytest.raises(ForbiddenOrigin):
        admit_origin(make_request({"origin": "http://testserver"}), settings)


# =============================================================================
# FETCH METADATA
# =============================================================================

@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"sec-fetch-site": "same-origin"},
        {"sec-fetch-site": "same-origin", "sec-fetch-mode": "cors"},
        {"sec-fetch-mode": "same-origin"},
    ],
)
def test_fetch_metadata_allowed(headers):
    """Same-origin or absent fetch metadata passes."""
    check_fetch_metadata(make_request(headers))


@pytest.mark.parametrize(
    "headers",
    [
        {"sec-fetch-site": "cross-site"},
        {"sec-fetch-site": "same-site"},
        {"sec-fetch-site": "none"},
        {"sec-fetch-mode": "navigate"},
        {"sec-fetch-mode": "no-cors"},
    ],
)
def test_fetch_metadata_blocked(headers):
    """Browsers' cross-site labels are refused."""
    with pytest.raises(CrossSiteRequest) as exc_info:
        check_fetch_metadata(make_request(headers))
    assert exc_info.value.public_message == "Cross-site request blocked"


# =============================================================================
# CLIENT IP / RATE LIMIT
# =============================================================================

def test_client_ip_prefers_cf_connecting_ip():
    """CF-Connecting-IP wins over X-Forwarded-For."""
    request = make_request({"cf-connecting-ip": "203.0.113.9", "x-forwarded-for": "198.51.100.1"})
    assert get_client_ip(request) == "203.0.113.9"


def test_client_ip_uses_first_forwarded_entry():
    """The first X-Forwarded-For hop is the client."""
    request = make_request({"x-forwarded-for": " 198.51.100.1 , 10.0.0.1"})
    assert get_client_ip(request) == "198.51.100.1"


def test_client_ip_unknown():
    """Without proxy headers every caller shares the 'unknown' bucket."""
    assert get_client_ip(make_request()) == "unknown"


def test_rate_limiter_window_resets(clock: FakeClock):
    """The limit applies per window and resets once 60 s have elapsed."""
    limiter = RateLimiter(2, clock=clock)
    assert not limiter.is_limited("ip")
    assert not limiter.is_limited("ip")
    assert limiter.is_limited("ip")
    assert not limiter.is_limited("other-ip")

    clock.advance(59_999)
    assert limiter.is_limited("ip")

    clock.advance(1)
    assert not limiter.is_limited("ip")


def test_rate_limiter_sweeps_stale_buckets(clock: FakeClock):
    """Stale buckets are dropped once the table grows past its cap."""
    limiter = RateLimiter(5, max_buckets=2, clock=clock)
    limiter.is_limited("a")
    limiter.is_limited("b")
    clock.advance(60_000)

    limiter.is_limited("c")
    assert len(limiter) == 1


def test_enforce_rate_limit_raises(clock: FakeClock):
    """Over-limit requests raise a 429."""
    limiter = RateLimiter(1, clock=clock)
    request = make_request({"x-forwarded-for": "198.51.100.1"})
    assert enforce_rate_limit(request, limiter) == "198.51.100.1"

    with pytest.raises(RateLimited) as exc_info:
        enforce_rate_limit(request, limiter)
    assert exc_info.value.status_code == 429


# =============================================================================
# BODY
# =============================================================================

@pytest.mark.asyncio
async def test_body_requires_json_content_type():
    """Only application/json bodies are read."""
    with pytest.raises(UnsupportedMediaType) as exc_info:
        await read_json_body(make_request({"content-type": "text/plain"}, [b"{}"]), 1024)
    assert exc_info.value.status_code == 415


@pytest.mark.asyncio
async def test_body_accepts_charset_suffix():
    """Content-Type parameters are tolerated."""
    request = make_request({"content-type": "application/json; charset=utf-8"}, [b'{"a": 1}'])
    assert await read_json_body(request, 1024) == {"a": 1}


@pytest.mark.asyncio
async def test_body_exactly_at_cap_accepted():
    """A body of exactly the cap is read."""
    body = b'{"a":"' + b"x" * (1024 - 8) + b'"}'
    assert len(body) == 1024
    request = make_request({**JSON_HEADERS, "content-length": "1024"}, [body])
    assert await read_json_body(request, 1024) == {"a": "x" * (1024 - 8)}


@pytest.mark.asyncio
async def test_body_declared_length_over_cap():
    """An oversized Content-Length is refused before reading."""
    request = make_request({**JSON_HEADERS, "content-length": "1025"}, [b"{}"])
    with pytest.raises(PayloadTooLarge) as exc_info:
        await read_json_body(request, 1024)
    assert exc_info.value.status_code == 413


@pytest.mark.asyncio
async def test_body_streamed_over_cap_without_length():
    """The streamed byte count is enforced when no Content-Length is sent."""
    request = make_request(JSON_HEADERS, [b" " * 600, b" " * 600])
    with pytest.raises(PayloadTooLarge):
        await read_json_body(request, 1024)


@pytest.mark.asyncio
async def test_body_streamed_over_declared_length():
    """A Content-Length that understates the body does not help."""
    request = make_request({**JSON_HEADERS, "content-length": "10"}, [b"{" + b" " * 2000 + b"}"])
    with pytest.raises(PayloadTooLarge):
        await read_json_body(request, 1024)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"{not json", b"[1, 2]", b'"text"', b"\xff\xfe", b""])
async def test_body_must_be_json_object(body):
    """Undecodable, invalid or non-object JSON is a 400."""
    with pytest.raises(ValidationFailed) as exc_info:
        await read_json_body(make_request(JSON_HEADERS, [body]), 1024)
    assert exc_info.value.status_code == 400
    assert exc_info.value.public_message == "Invalid JSON body"


@pytest.mark.asyncio
async def test_body_client_disconnect():
    """A client that goes away mid-body gets a 400."""
    request = make_request(JSON_HEADERS, [b'{"a":'], disconnect=True)
    with pytest.raises(ValidationFailed) as exc_info:
        await read_json_body(request, 1024)
    assert exc_info.value.public_message == "Invalid request body"


# =============================================================================
# FIELDS
# =============================================================================

def _fields(**overrides):
    body = {
        "title": "  New order  ",
        "message": " 1x Tea ",
        "locationToken": " table-1 ",
        "authToken": " abc.def ",
    }
    body.update(overrides)
    return body


def test_fields_are_trimmed():
    """String fields are trimmed."""
    order = parse_notify_order(_fields())
    assert order.title == "New order"
    assert order.message == "1x Tea"
    assert order.location_token == "table-1"
    assert order.auth_token == "abc.def"


def test_title_and_message_truncated():
    """Overlong title and message are cut, not rejected."""
    order = parse_notify_order(_fields(title="t" * 500, message="m" * 5000))
    assert len(order.title) == MAX_TITLE_LENGTH
    assert len(order.message) == MAX_MESSAGE_LENGTH


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"title": None}, REQUIRED_FIELDS_MESSAGE),
        ({"message": 42}, REQUIRED_FIELDS_MESSAGE),
        ({"authToken": ["a"]}, REQUIRED_FIELDS_MESSAGE),
        ({"title": "   "}, "title and message are required"),
        ({"message": ""}, "title and message are required"),
        ({"locationToken": "table 1"}, "Invalid locationToken"),
        ({"locationToken": "x" * 81}, "Invalid locationToken"),
        ({"authToken": "  "}, "Invalid authToken"),
        ({"authToken": "a" * 2049}, "Invalid authToken"),
    ],
)
def test_field_errors(overrides, message):
    """Each invalid field maps to its client-facing message."""
    with pytest.raises(ValidationFailed) as exc_info:
        parse_notify_order(_fields(**overrides))
    assert exc_info.value.public_message == message


def test_missing_field():
    """Absent fields are reported with the required-fields message."""
    body = _fields()
    del body["locationToken"]
    with pytest.raises(ValidationFailed) as exc_info:
        parse_notify_order(body)
    assert exc_info.value.public_message == REQUIRED_FIELDS_MESSAGE


def test_unknown_fields_ignored():
    """Extra keys in the body are ignored."""
    assert parse_notify_order(_fields(extra=json.dumps({"x": 1}))).title == "New order"
