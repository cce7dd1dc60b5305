"""
Static Location Validator

Used when NOTIFY_LOCATION_TOKENS is set. An allow-list that is configured
but parses to nothing is a deployment mistake and every lookup fails closed.
"""

import logging
from typing import Iterable

from qr_notify.services.locations.base import BaseLocationValidator, LocationCheckResult

logger = logging.getLogger(__name__)


class StaticLocationValidator(BaseLocationValidator):
    """Allow-list backed validator."""

    def __init__(self, tokens: Iterable[str]):
        self._tokens = frozenset(t for t in tokens if t)
        if self._tokens:
            logger.info(f"StaticLocationValidator initialized ({len(self._tokens)} locations)")
        else:
            logger.error("NOTIFY_LOCATION_TOKENS is set but contains no tokens")

    @property
    def provider_name(self) -> str:
        return "static"

    async def check(self, location_token: str) -> LocationCheckResult:
        if not self._tokens:
            return LocationCheckResult(
                is_known=False,
                error_code="misconfigured",
                error_message="Location allow-list is empty",
            )
        return LocationCheckResult(is_known=location_token in self._tokens)

    async def health_check(self) -> bool:
        return bool(self._tokens)
