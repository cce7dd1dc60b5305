"""
Process-wide Notify State

Everything the notify endpoint remembers between requests lives in one
``NotifyState`` built when the app is created: rate-limit buckets, consumed
token ids, the signing-key cache, the location validator (with its catalog
cache) and the notification service. Handlers receive it through the
``get_notify_state`` dependency.

The state is in-memory and per process; it starts empty after a restart and
is not shared between instances.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from qr_notify.core.config import Settings
from qr_notify.security.replay import ReplayGuard
from qr_notify.security.signer import HmacSigner, SigningKeyCache, resolve_signing_secret
from qr_notify.security.tokens import NotifyTokenService, now_ms
from qr_notify.services.admission import RateLimiter
from qr_notify.services.locations import BaseLocationValidator, get_location_validator
from qr_notify.services.notifications import BaseNotificationService, get_notification_service

logger = logging.getLogger(__name__)


@dataclass
class NotifyState:
    settings: Settings
    token_service: NotifyTokenService
    replay_guard: ReplayGuard
    rate_limiter: RateLimiter
    location_validator: BaseLocationValidator
    notifier: BaseNotificationService

    @classmethod
    def build(
        cls,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
        location_validator: Optional[BaseLocationValidator] = None,
        notifier: Optional[BaseNotificationService] = None,
    ) -> "NotifyState":
        """
        Wire up the state for one application instance.

        Args:
            settings: Application settings
            clock: Epoch-milliseconds clock shared by tokens, replay guard and limiter
            location_validator: Override the validator chosen from settings
            notifier: Override the notification service chosen from settings
        """
        secret = resolve_signing_secret(settings)
        if not secret:
            logger.error("Notify signing secret not configured (set NOTIFY_SIGNING_SECRET or Pushover keys)")

        signer = HmacSigner(SigningKeyCache())

        return cls(
            settings=settings,
            token_service=NotifyTokenService(signer, secret, clock=clock),
            replay_guard=ReplayGuard(clock=clock),
            rate_limiter=RateLimiter(settings.notify_rate_limit_per_minute, clock=clock),
            location_validator=location_validator or get_location_validator(settings),
            notifier=notifier or get_notification_service(settings),
        )

    async def aclose(self) -> None:
        await self.location_validator.aclose()
        await self.notifier.aclose()


def get_notify_state(request: Request) -> NotifyState:
    """FastAPI dependency returning the app's ``NotifyState``."""
    return request.app.state.notify
