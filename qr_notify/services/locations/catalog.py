"""
Catalog Location Validator

Reads the set of valid location tokens from the catalog document the guest
UI is built from:

    {"locations": [{"token": "table-1", ...}, {"token": "bar-3", ...}]}

The catalog URL is fixed at startup: NOTIFY_CATALOG_URL, or
``/catalog/order-config.json`` on the first ALLOWED_ORIGINS entry. It is
never derived from request headers. Without either setting every lookup
fails closed.

The token set is cached for NOTIFY_CATALOG_TTL_SECONDS. Concurrent cache
misses share one in-flight fetch.

Version: 1.0.0
"""

import asyncio
import logging
import time
from typing import Any, Callable, Iterable, Optional

import httpx

from qr_notify.schemas import is_valid_location_token
from qr_notify.services.admission import normalize_origin
from qr_notify.services.locations.base import BaseLocationValidator, LocationCheckResult

logger = logging.getLogger(__name__)

CATALOG_PATH = "/catalog/order-config.json"


class CatalogFetchError(Exception):
    """Catalog could not be fetched or did not look like a catalog."""


def resolve_catalog_url(catalog_url: Optional[str], allowed_origins: Iterable[str]) -> Optional[str]:
    """
    Pick the catalog URL from configuration only.

    An explicit URL wins; otherwise the well-known path on the first valid
    configured origin. None when neither is available.
    """
    if catalog_url and catalog_url.strip():
        return catalog_url.strip()

    for origin in allowed_origins:
        normalized = normalize_origin(origin)
        if normalized:
            return f"{normalized}{CATALOG_PATH}"
    return None


def extract_location_tokens(document: Any) -> Optional[frozenset[str]]:
    """
    Pull ``locations[].token`` out of a catalog document.

    Returns None when the document has no ``locations`` array. Entries
    without a well-formed token are skipped.
    """
    if not isinstance(document, dict):
        return None

    locations = document.get("locations")
    if not isinstance(locations, list):
        return None

    tokens = set()
    for location in locations:
        if not isinstance(location, dict):
            continue
        token = location.get("token")
        if isinstance(token, str) and is_valid_location_token(token.strip()):
            tokens.add(token.strip())
    return frozenset(tokens)


class CatalogLocationValidator(BaseLocationValidator):
    """
    Catalog backed validator with TTL cache and single-flight fetches.

    Args:
        catalog_url: Resolved catalog URL; None means catalog mode is misconfigured
        ttl_seconds: How long a fetched token set is trusted
        timeout_seconds: Bound for one catalog fetch
        client: Shared httpx client (created lazily when omitted)
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        catalog_url: Optional[str],
        ttl_seconds: float = 300,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.catalog_url = catalog_url
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._client = client
        self._owns_client = client is None
        self._cached: Optional[tuple[frozenset[str], float]] = None
        self._inflight: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._last_error: Optional[str] = None
        self.fetch_count = 0

        if catalog_url:
            logger.info(f"CatalogLocationValidator initialized (url={catalog_url})")
        else:
            logger.error("Catalog mode needs NOTIFY_CATALOG_URL or ALLOWED_ORIGINS")

    @property
    def provider_name(self) -> str:
        return "catalog"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def check(self, location_token: str) -> LocationCheckResult:
        if not self.catalog_url:
            return LocationCheckResult(
                is_known=False,
                error_code="misconfigured",
                error_message="Catalog URL is not configured",
            )

        try:
            tokens = await self.get_tokens()
        except CatalogFetchError as e:
            return LocationCheckResult(
                is_known=False,
                error_code="catalog_unavailable",
                error_message=str(e),
            )
        return LocationCheckResult(is_known=location_token in tokens)

    async def get_tokens(self) -> frozenset[str]:
        """Return the cached token set, fetching it at most once at a time."""
        cached = self._cached
        if cached is not None and self.clock() - cached[1] < self.ttl_seconds:
            return cached[0]

        async with self._lock:
            task = self._inflight
            if task is None:
                task = asyncio.ensure_future(self._fetch(self.catalog_url))
                self._inflight = task
                task.add_done_callback(self._fetch_done)

        # Shielded so one caller's cancellation does not abort the shared fetch.
        return await asyncio.shield(task)

    def _fetch_done(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter went away.
            task.exception()

    async def _fetch(self, url: str) -> frozenset[str]:
        self.fetch_count += 1
        logger.debug(f"Fetching catalog from {url}")

        try:
            response = await asyncio.wait_for(
                self._get_client().get(url, headers={"Accept": "application/json"}),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._last_error = "timeout"
            logger.error(f"Catalog fetch timed out: {url}")
            raise CatalogFetchError("Catalog fetch timed out")
        except httpx.HTTPError as e:
            self._last_error = "transport_error"
            logger.error(f"Catalog fetch failed: {url} - {e}")
            raise CatalogFetchError("Catalog fetch failed")
        except Exception as e:
            self._last_error = "unexpected_error"
            logger.exception(f"Catalog: Unexpected error - {e}")
            raise CatalogFetchError("Catalog fetch failed")

        if not response.is_success:
            self._last_error = f"http_{response.status_code}"
            logger.error(f"Catalog fetch returned HTTP {response.status_code}: {url}")
            raise CatalogFetchError(f"Catalog returned HTTP {response.status_code}")

        try:
            document = response.json()
        except ValueError:
            self._last_error = "invalid_json"
            logger.error(f"Catalog is not valid JSON: {url}")
            raise CatalogFetchError("Catalog is not valid JSON")

        tokens = extract_location_tokens(document)
        if tokens is None:
            self._last_error = "malformed"
            logger.error(f"Catalog has no locations array: {url}")
            raise CatalogFetchError("Catalog is malformed")

        self._cached = (tokens, self.clock())
        self._last_error = None
        logger.info(f"Catalog loaded: {len(tokens)} locations from {url}")
        return tokens

    def invalidate(self) -> None:
        self._cached = None

    async def health_check(self) -> bool:
        return bool(self.catalog_url) and self._last_error is None

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
