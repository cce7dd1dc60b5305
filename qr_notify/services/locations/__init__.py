"""
Location Validator Factory

Selects the static allow-list validator when NOTIFY_LOCATION_TOKENS is set
(even to an empty value, which then fails closed), and the catalog-backed
validator otherwise. The catalog URL comes from NOTIFY_CATALOG_URL or the
first ALLOWED_ORIGINS entry.

Usage:
    from qr_notify.services.locations import get_location_validator

    validator = get_location_validator(settings)
    result = await validator.check("table-4")
"""

import logging
from typing import Optional

import httpx

from qr_notify.core.config import Settings
from qr_notify.services.locations.base import BaseLocationValidator, LocationCheckResult
from qr_notify.services.locations.catalog import (
    CatalogLocationValidator,
    extract_location_tokens,
    resolve_catalog_url,
)
from qr_notify.services.locations.static import StaticLocationValidator

logger = logging.getLogger(__name__)


def get_location_validator(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> BaseLocationValidator:
    """Build the location validator for the configured mode."""
    if settings.uses_static_locations:
        logger.info("Location Validator: Using StaticLocationValidator")
        return StaticLocationValidator(settings.static_location_tokens)

    logger.info("Location Validator: Using CatalogLocationValidator")
    return CatalogLocationValidator(
        catalog_url=resolve_catalog_url(settings.notify_catalog_url, settings.allowed_origins_list),
        ttl_seconds=settings.notify_catalog_ttl_seconds,
        timeout_seconds=settings.notify_catalog_timeout_ms / 1000,
        client=client,
    )


__all__ = [
    "get_location_validator",
    "BaseLocationValidator",
    "LocationCheckResult",
    "StaticLocationValidator",
    "CatalogLocationValidator",
    "extract_location_tokens",
    "resolve_catalog_url",
]
