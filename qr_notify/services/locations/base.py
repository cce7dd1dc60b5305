"""
Location Validator Abstract Base Class

Defines the interface contract for deciding whether a location token
(a table or spot printed on a QR code) is legitimate.

Implementations:
    - StaticLocationValidator: allow-list from NOTIFY_LOCATION_TOKENS
    - CatalogLocationValidator: token set read from the published catalog

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class LocationCheckResult:
    """
    Standardized result from a location lookup.

    Attributes:
        is_known: Whether the token belongs to a configured location
        error_code: Machine-readable failure reason ("misconfigured",
            "catalog_unavailable") when the lookup itself could not be done
        error_message: Server-side description of the failure
    """
    is_known: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def lookup_failed(self) -> bool:
        return self.error_code is not None


class BaseLocationValidator(ABC):
    """Abstract base class for location validators."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the validator mode name ("static" or "catalog")."""
        pass

    @abstractmethod
    async def check(self, location_token: str) -> LocationCheckResult:
        """
        Check a location token.

        Args:
            location_token: Already format-validated location token
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Report whether lookups can currently succeed."""
        pass

    async def aclose(self) -> None:
        """Release network resources, if any."""
        return None
