"""
Mock Notification Service

Simulates Pushover delivery for development.
No actual notifications are sent - just logged.

Version: 1.0.0
"""

import asyncio
import random
import uuid
import logging

from qr_notify.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """Mock notification service for development."""

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.sent: list[dict[str, str]] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def is_configured(self) -> bool:
        return True

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def send_order_alert(
        self,
        title: str,
        message: str,
    ) -> NotificationResult:
        """Simulate sending an order alert."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock alert failed (simulated): {title}")
            return NotificationResult(
                success=False,
                error_code="provider_rejected",
                error_message="Simulated provider failure",
                provider="mock",
            )

        message_id = f"alert_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"title": title, "message": message})
        logger.info(f"Mock alert sent: {title} - {message[:50]}... (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock",
        )

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
