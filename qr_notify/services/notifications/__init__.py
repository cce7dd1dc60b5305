"""
Notification Service Factory

Returns Mock or Pushover notification service based on ENV_MODE.

Version: 1.0.0
"""

import logging
from typing import Optional

import httpx

from qr_notify.core.config import Settings
from qr_notify.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)
from qr_notify.services.notifications.mock import MockNotificationService
from qr_notify.services.notifications.pushover import PushoverNotificationService

logger = logging.getLogger(__name__)


def get_notification_service(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> BaseNotificationService:
    """Get the configured notification service."""
    if settings.is_development:
        logger.info("Notification Service: Using MockNotificationService (development mode)")
        return MockNotificationService(min_latency=0.05, max_latency=0.2)
    else:
        logger.info(f"Notification Service: Using PushoverNotificationService ({settings.env_mode.value} mode)")
        return PushoverNotificationService(
            app_token=settings.pushover_app_token,
            user_key=settings.pushover_user_key,
            timeout_seconds=settings.pushover_timeout_ms / 1000,
            api_url=settings.pushover_api_url,
            client=client,
        )


__all__ = [
    "get_notification_service",
    "BaseNotificationService",
    "NotificationResult",
    "MockNotificationService",
    "PushoverNotificationService",
]
