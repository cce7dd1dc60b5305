"""
Notification Service Abstract Base Class

Defines the interface for relaying a guest's order to staff as a push
notification. Supports both Mock (development) and Pushover (production)
implementations.

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class NotificationResult:
    """
    Result from sending a notification.

    Attributes:
        success: Whether the provider accepted the notification
        message_id: Provider request id, if returned
        error_code: "timeout", "provider_rejected" or "transport_error"
        error_message: Server-side failure description (never sent to clients)
        provider_status: HTTP status returned by the provider, if any
        provider: Provider name
    """
    success: bool
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    provider_status: Optional[int] = None
    provider: str = "unknown"

    @property
    def timed_out(self) -> bool:
        return self.error_code == "timeout"


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the credentials needed to send are present."""
        pass

    @abstractmethod
    async def send_order_alert(
        self,
        title: str,
        message: str,
    ) -> NotificationResult:
        """Send an urgent order alert to staff."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    async def aclose(self) -> None:
        """Release network resources, if any."""
        return None
