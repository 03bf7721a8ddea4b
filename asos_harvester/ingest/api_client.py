"""Client for the site's internal search and stock/price APIs.

Used only when page-embedded data is missing. Every failure (transport,
non-2xx status, unexpected body) degrades to an empty result so the
extraction waterfall can move on to the next strategy.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

import httpx

from asos_harvester import metrics
from asos_harvester.config import settings
from asos_harvester.ingest.catalog_locator import API_PRODUCT_PATHS, locate_products
from asos_harvester.ingest.http_client import (
    BlockedError,
    PermanentURLError,
    RateLimitedError,
    SitePolicy,
    TransientFetchError,
    api_headers,
    fetch_with_policy,
    get_policy,
)
from asos_harvester.ingest.pagination import PaginationInfo

logger = logging.getLogger(__name__)

FETCH_ERRORS = (
    BlockedError,
    PermanentURLError,
    RateLimitedError,
    TransientFetchError,
    httpx.HTTPError,
)


@dataclass
class ApiOptions:
    """Store/locale options shared by the API endpoints."""

    store: str = field(default_factory=lambda: settings.api_store)
    currency: str = field(default_factory=lambda: settings.api_currency)
    lang: str = field(default_factory=lambda: settings.api_lang)
    country: str = field(default_factory=lambda: settings.api_country)
    limit: int = field(default_factory=lambda: settings.api_page_size)
    sort_by: Optional[str] = "pricedesc"


@dataclass
class ApiListing:
    """Products and authoritative pagination from the search API."""

    products: List[Dict[str, Any]] = field(default_factory=list)
    pagination: Optional[PaginationInfo] = None
    facets: List[Any] = field(default_factory=list)
    error: Optional[str] = None


class ApiFallbackClient:
    """
    Synchronous client for the internal listing and stock/price APIs.

    Features:
    - Explicit timeouts and bounded retries via SitePolicy
    - Authoritative offset/limit pagination
    - Never raises on fetch failures (returns empty results)
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        search_policy: Optional[SitePolicy] = None,
        stock_policy: Optional[SitePolicy] = None,
        proxy: Optional[str] = None,
    ):
        """
        Initialize the API client.

        Args:
            client: Optional pre-configured httpx.Client (owned by the caller)
            search_policy: Policy for the search endpoint
            stock_policy: Policy for the stock/price endpoint
            proxy: Optional proxy URL for the internally created client
        """
        self._client = client
        self._owns_client = client is None
        self._proxy = proxy
        self._client_lock = threading.Lock()
        self.search_policy = search_policy or get_policy("asos_api")
        self.stock_policy = stock_policy or get_policy("asos_stock_api")

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client (one per instance, shared by all threads)."""
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(follow_redirects=True, proxy=self._proxy)
            return self._client

    def close(self):
        """Close HTTP client if this instance created it."""
        with self._client_lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None

    def __enter__(self) -> "ApiFallbackClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _get_json(self, url: str, params: Dict[str, str], policy: SitePolicy, endpoint: str) -> Any:
        """GET JSON through the policy; None on any failure."""
        started = time.monotonic()
        try:
            response = fetch_with_policy(
                self._get_client(),
                url,
                policy,
                headers=api_headers(),
                params=params,
            )
            data = response.json()
        except FETCH_ERRORS as e:
            metrics.record_api_call(endpoint, False, time.monotonic() - started)
            logger.warning(f"ASOS {endpoint} API failed: {e}")
            return None
        except ValueError as e:
            metrics.record_api_call(endpoint, False, time.monotonic() - started)
            logger.warning(f"ASOS {endpoint} API returned invalid JSON: {e}")
            return None

        metrics.record_api_call(endpoint, True, time.monotonic() - started)
        return data

    def build_search_params(
        self, keyword: str, page_index: int, options: Optional[ApiOptions] = None
    ) -> Dict[str, str]:
        """Query parameters for a 0-indexed search results page."""
        opts = options or ApiOptions()
        offset = max(0, page_index) * opts.limit
        params = {
            "q": keyword,
            "store": opts.store,
            "lang": opts.lang,
            "currency": opts.currency,
            "offset": str(offset),
            "limit": str(opts.limit),
            "country": opts.country,
            "keyStoreDataversion": settings.api_key_store_version,
        }
        if opts.sort_by:
            params["sort"] = opts.sort_by
        return params

    def fetch_listing(
        self,
        keyword: str,
        page_index: int = 0,
        options: Optional[ApiOptions] = None,
    ) -> ApiListing:
        """
        Fetch one page of search results.

        Args:
            keyword: Search keyword
            page_index: Page number (0-indexed for the API)
            options: Store, currency, page size and sort options

        Returns:
            ApiListing; empty (with ``error`` set) when the call failed
        """
        opts = options or ApiOptions()
        params = self.build_search_params(keyword, page_index, opts)

        logger.info(f"Fetching ASOS Search API: {keyword} (page {page_index})")
        data = self._get_json(settings.api_search_url, params, self.search_policy, "search")
        if not isinstance(data, dict):
            return ApiListing(error="request failed" if data is None else "unexpected body")

        products = locate_products(data, API_PRODUCT_PATHS)
        if not products:
            logger.warning("API response missing products array")
            return ApiListing(error="no products")

        item_count = data.get("itemCount") or 0
        try:
            item_count = int(item_count)
        except (TypeError, ValueError):
            item_count = 0

        offset = int(params["offset"])
        pagination = PaginationInfo(
            page=offset // opts.limit + 1,
            page_size=opts.limit,
            total_results=item_count,
            total_pages=math.ceil(item_count / opts.limit) if item_count else None,
        )

        logger.info(f"API returned {len(products)} products")
        return ApiListing(
            products=products,
            pagination=pagination,
            facets=data.get("facets") or [],
        )

    def fetch_stock_price(
        self,
        product_ids: Union[str, int, Iterable[Union[str, int]]],
        options: Optional[ApiOptions] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch stock and price data for specific products.

        Args:
            product_ids: Single ID or iterable of IDs
            options: Store and currency options

        Returns:
            List of stock/price records; empty on failure
        """
        opts = options or ApiOptions()
        if isinstance(product_ids, (str, int)):
            ids = str(product_ids)
        else:
            ids = ",".join(str(pid) for pid in product_ids)
        if not ids:
            return []

        params = {
            "productIds": ids,
            "store": opts.store,
            "currency": opts.currency,
            "keyStoreDataversion": settings.api_key_store_version,
            "country": opts.country,
        }

        logger.debug(f"Fetching stock/price for products: {ids}")
        data = self._get_json(settings.api_stockprice_url, params, self.stock_policy, "stockprice")
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]
