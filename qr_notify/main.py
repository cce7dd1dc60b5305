"""
FastAPI Application Entry Point

QR Table Notify - order notification relay for QR table ordering.
Guests scan a table's QR code, build a cart in the browser and submit it;
this service authorizes the submission and relays it to staff via Pushover.

Endpoints:
    - OPTIONS /api/notify: CORS preflight
    - GET /api/notify?locationToken=...: Issue a single-use auth token
    - POST /api/notify: Relay an order notification
    - GET /health: System health check

Order submission passes these stages, and can be rejected at each one up
to and including AUTHORIZED:
    ADMITTED -> VALIDATED -> AUTHORIZED -> DISPATCHED -> SUCCEEDED | FAILED

Version: 1.0.0
"""

import logging
import re
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from qr_notify.core.config import Settings, get_settings, setup_logging
from qr_notify.core.errors import (
    ConfigurationMissing,
    CatalogUnavailable,
    NotifyError,
    ProviderRejected,
    ProviderTimeout,
    ReplayDetected,
    Unauthorized,
    ValidationFailed,
)
from qr_notify.core.state import NotifyState, get_notify_state
from qr_notify.schemas import (
    HealthResponse,
    NotifyOkResponse,
    NotifyTokenResponse,
    is_valid_location_token,
)
from qr_notify.security.tokens import SAFE_ID_PATTERN, compute_client_binding, generate_session_id
from qr_notify.services.admission import (
    admit_origin,
    build_cors_headers,
    check_fetch_metadata,
    enforce_rate_limit,
    get_allowed_origin,
    get_client_ip,
    parse_notify_order,
    read_json_body,
)

logger = logging.getLogger(__name__)

NOTIFY_PATH = "/api/notify"
SESSION_COOKIE_NAME = "notify_session"

_SESSION_ID_RE = re.compile(SAFE_ID_PATTERN)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def client_binding_for(request: Request) -> str:
    """Fingerprint of the calling client (IP + user agent)."""
    return compute_client_binding(get_client_ip(request), request.headers.get("user-agent", ""))


def require_signing_secret(state: NotifyState) -> None:
    if not state.token_service.is_configured:
        raise ConfigurationMissing("Notify signing secret not configured")


async def ensure_known_location(state: NotifyState, location_token: str) -> None:
    """Reject location tokens that are not part of the venue's configuration."""
    result = await state.location_validator.check(location_token)

    if result.error_code == "misconfigured":
        if state.location_validator.provider_name == "catalog":
            raise ConfigurationMissing("Location catalog URL not configured")
        raise ConfigurationMissing("Location allow-list not configured")
    if result.error_code == "catalog_unavailable":
        raise CatalogUnavailable()
    if not result.is_known:
        logger.info(f"Unknown locationToken: {location_token}")
        raise ValidationFailed("Unknown locationToken")


def cookie_is_secure(request: Request, settings: Settings) -> bool:
    """NOTIFY_COOKIE_SECURE wins; otherwise follow the request scheme."""
    if settings.notify_cookie_secure is not None:
        return settings.notify_cookie_secure
    return request.url.scheme == "https"


def read_session_id(request: Request) -> str:
    session_id = request.cookies.get(SESSION_COOKIE_NAME) or ""
    if not _SESSION_ID_RE.match(session_id):
        logger.info("Notify request without a valid session cookie")
        raise Unauthorized()
    return session_id


def json_response(
    data: Any,
    allowed_origin: Optional[str],
    status_code: int = 200,
    extra_headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    headers = build_cors_headers(allowed_origin) if allowed_origin else {}
    headers.update(extra_headers or {})
    return JSONResponse(content=data, status_code=status_code, headers=headers)


# =============================================================================
# NOTIFY ENDPOINTS
# =============================================================================

router = APIRouter(tags=["Notify"])


@router.options(NOTIFY_PATH, summary="CORS preflight")
async def notify_preflight(
    request: Request,
    state: NotifyState = Depends(get_notify_state),
) -> Response:
    allowed_origin = get_allowed_origin(request, state.settings)
    if not allowed_origin:
        return Response(status_code=403)

    return Response(status_code=204, headers=build_cors_headers(allowed_origin))


@router.get(
    NOTIFY_PATH,
    response_model=NotifyTokenResponse,
    summary="Issue Notify Auth Token",
)
async def issue_notify_token(
    request: Request,
    state: NotifyState = Depends(get_notify_state),
) -> JSONResponse:
    """
    Issue a short-lived, single-use token for one location.

    The token is bound to a fresh session (returned as an HttpOnly cookie)
    and to the caller's IP and user agent.
    """
    allowed_origin = admit_origin(request, state.settings)
    require_signing_secret(state)
    enforce_rate_limit(request, state.rate_limiter)

    location_token = (request.query_params.get("locationToken") or "").strip()
    if not is_valid_location_token(location_token):
        raise ValidationFailed("Invalid locationToken")

    await ensure_known_location(state, location_token)

    ttl_seconds = state.settings.notify_auth_ttl_seconds
    session_id = generate_session_id()
    issued = state.token_service.issue(
        location_token=location_token,
        session_id=session_id,
        client_binding=client_binding_for(request),
        ttl_seconds=ttl_seconds,
    )
    if issued is None:
        raise ConfigurationMissing("Notify signing secret not configured")

    body = NotifyTokenResponse(auth_token=issued.token, expires_at_ms=issued.expires_at_ms)
    response = json_response(
        body.model_dump(by_alias=True),
        allowed_origin,
        extra_headers={"Cache-Control": "no-store"},
    )
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        max_age=ttl_seconds,
        path=NOTIFY_PATH,
        secure=cookie_is_secure(request, state.settings),
        httponly=True,
        samesite="strict",
    )

    logger.info(f"Issued notify token for location {location_token}")
    return response


@router.post(
    NOTIFY_PATH,
    response_model=NotifyOkResponse,
    summary="Relay Order Notification",
)
async def submit_order_notification(
    request: Request,
    state: NotifyState = Depends(get_notify_state),
) -> JSONResponse:
    """
    Relay a guest's order to staff.

    Requires the auth token from ``GET /api/notify`` together with the
    session cookie issued alongside it. Each token can be used once.
    """
    # ADMITTED
    allowed_origin = admit_origin(request, state.settings)
    check_fetch_metadata(request)

    if not state.notifier.is_configured:
        raise ConfigurationMissing("Pushover credentials not configured")
    require_signing_secret(state)

    enforce_rate_limit(request, state.rate_limiter)

    # VALIDATED
    body = await read_json_body(request, state.settings.notify_max_body_bytes)
    order = parse_notify_order(body)
    await ensure_known_location(state, order.location_token)

    # AUTHORIZED
    session_id = read_session_id(request)
    verification = state.token_service.verify(
        order.auth_token,
        order.location_token,
        session_id,
        client_binding_for(request),
    )
    if not verification.ok:
        logger.info(f"Rejected notify token ({verification.reason})")
        raise Unauthorized()

    payload = verification.payload
    if state.replay_guard.seen(payload.token_id):
        logger.warning(f"Replay of notify token for location {order.location_token}")
        raise ReplayDetected()
    state.replay_guard.remember(payload.token_id, payload.expires_at_ms)

    # DISPATCHED
    result = await state.notifier.send_order_alert(order.title, order.message)
    if not result.success:
        if result.timed_out:
            raise ProviderTimeout()
        if result.error_code == "provider_rejected":
            raise ProviderRejected()
        raise ProviderRejected("Notification request failed. Please try again.")

    logger.info(f"Order notification relayed for location {order.location_token}")
    return json_response(NotifyOkResponse().model_dump(), allowed_origin)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

system_router = APIRouter()


@system_router.get("/", tags=["Root"])
async def root(state: NotifyState = Depends(get_notify_state)) -> dict[str, str]:
    """API root with navigation links."""
    settings = state.settings
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "notify": NOTIFY_PATH,
        "health": "/health",
    }


@system_router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(state: NotifyState = Depends(get_notify_state)) -> HealthResponse:
    """Verify the notify pipeline can authorize and deliver."""
    notifier_ok = await state.notifier.health_check()
    locations_ok = await state.location_validator.health_check()
    signing_ok = state.token_service.is_configured

    problems = []
    if not notifier_ok:
        problems.append(f"{state.notifier.provider_name} notifier not ready")
    if not locations_ok:
        problems.append(f"{state.location_validator.provider_name} locations not ready")
    if not signing_ok:
        problems.append("signing secret missing")

    return HealthResponse(
        status="operational" if not problems else "degraded",
        notification_service=state.notifier.provider_name,
        location_mode=state.location_validator.provider_name,
        signing_configured=signing_ok,
        timestamp=datetime.now(),
        detail="; ".join(problems) or None,
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

async def notify_error_handler(request: Request, exc: NotifyError) -> JSONResponse:
    """Render taxonomy errors with their client-safe message only."""
    if isinstance(exc, ConfigurationMissing):
        logger.error(f"Configuration error: {exc.public_message}")

    allowed_origin = getattr(request.state, "allowed_origin", None)
    return json_response(
        {"ok": False, "error": exc.public_message},
        allowed_origin,
        status_code=exc.status_code,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "Internal Server Error"},
    )


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    state: Optional[NotifyState] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to cached environment settings)
        state: Pre-built state (tests inject fakes here)
    """
    settings = settings or (state.settings if state else get_settings())
    setup_logging(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application startup and shutdown events.
        """
        notify_state: NotifyState = app.state.notify

        logger.info("=" * 60)
        logger.info(f"🚀 Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Debug: {settings.debug}")
        logger.info(f"✅ Notification Service: {notify_state.notifier.provider_name}")
        logger.info(f"✅ Location Validator: {notify_state.location_validator.provider_name}")

        if settings.use_real_services:
            missing = settings.validate_production_config()
            if missing:
                logger.warning(f"⚠️ Missing production config: {missing}")

        logger.info("=" * 60)

        yield  # Application runs

        # Shutdown
        logger.info("Shutting down...")
        await notify_state.aclose()
        logger.info("✅ Cleanup complete")

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Authorizes QR table orders with signed single-use tokens "
            "and relays them to staff as push notifications."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
    )
    app.state.notify = state or NotifyState.build(settings)

    app.include_router(router)
    app.include_router(system_router)

    app.add_exception_handler(NotifyError, notify_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    return app


app = create_app()
