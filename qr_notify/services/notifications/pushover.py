"""
Pushover Notification Service

Production implementation that relays order alerts to the Pushover
messages API as emergency-priority notifications: they repeat every
30 seconds for up to 10 minutes until a staff member acknowledges them.

Requirements:
    - PUSHOVER_APP_TOKEN and PUSHOVER_USER_KEY must be set

API Documentation:
    https://pushover.net/api

The outbound call is bounded by PUSHOVER_TIMEOUT_MS. A timeout is reported
separately from other failures so the endpoint can answer 504 instead of 502.
Nothing is retried here.

Version: 1.0.0
"""

import asyncio
import logging
from typing import Optional

import httpx

from qr_notify.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)

PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"

EMERGENCY_PRIORITY = "2"
RETRY_SECONDS = "30"
EXPIRE_SECONDS = "600"
ALERT_SOUND = "persistent"

MAX_LOGGED_BODY_CHARS = 500


class PushoverNotificationService(BaseNotificationService):
    """
    Production notification service using Pushover.

    Args:
        app_token: Pushover application token
        user_key: Pushover user or group key
        timeout_seconds: Upper bound for the whole outbound call
        api_url: Messages endpoint (overridable for testing)
        client: Shared httpx client (created lazily when omitted)
    """

    def __init__(
        self,
        app_token: Optional[str],
        user_key: Optional[str],
        timeout_seconds: float = 8.0,
        api_url: str = PUSHOVER_API_URL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.app_token = app_token
        self.user_key = user_key
        self.timeout_seconds = timeout_seconds
        self.api_url = api_url
        self._client = client
        self._owns_client = client is None

        if not self.is_configured:
            logger.warning("Pushover credentials not configured")

        logger.info(f"PushoverNotificationService initialized (timeout={timeout_seconds:.1f}s)")

    @property
    def provider_name(self) -> str:
        return "pushover"

    @property
    def is_configured(self) -> bool:
        return bool(self.app_token and self.user_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    def build_form(self, title: str, message: str) -> dict[str, str]:
        """Form fields for an urgent, repeating, acknowledgeable alert."""
        return {
            "token": self.app_token or "",
            "user": self.user_key or "",
            "title": title,
            "message": message,
            "priority": EMERGENCY_PRIORITY,
            "retry": RETRY_SECONDS,
            "expire": EXPIRE_SECONDS,
            "sound": ALERT_SOUND,
        }

    async def send_order_alert(
        self,
        title: str,
        message: str,
    ) -> NotificationResult:
        """Send the alert via Pushover."""
        if not self.is_configured:
            return NotificationResult(
                success=False,
                error_code="transport_error",
                error_message="Pushover not configured",
                provider="pushover",
            )

        try:
            response = await asyncio.wait_for(
                self._get_client().post(self.api_url, data=self.build_form(title, message)),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error(f"Pushover request timed out after {self.timeout_seconds:.1f}s")
            return NotificationResult(
                success=False,
                error_code="timeout",
                error_message="Pushover request timed out",
                provider="pushover",
            )
        except httpx.HTTPError as e:
            logger.error(f"Pushover request failed: {e}")
            return NotificationResult(
                success=False,
                error_code="transport_error",
                error_message=str(e),
                provider="pushover",
            )
        except Exception as e:
            logger.exception(f"Pushover: Unexpected error - {e}")
            return NotificationResult(
                success=False,
                error_code="transport_error",
                error_message="Unexpected error",
                provider="pushover",
            )

        if not response.is_success:
            logger.error(
                f"Pushover rejected notification: status={response.status_code} "
                f"body={response.text[:MAX_LOGGED_BODY_CHARS]!r}"
            )
            return NotificationResult(
                success=False,
                error_code="provider_rejected",
                error_message=f"Pushover returned HTTP {response.status_code}",
                provider_status=response.status_code,
                provider="pushover",
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        message_id = body.get("request") if isinstance(body, dict) else None

        logger.info(f"Pushover alert sent: {title} (request: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider_status=response.status_code,
            provider="pushover",
        )

    async def health_check(self) -> bool:
        """Credentials present; Pushover has no cheap authenticated ping."""
        return self.is_configured

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
