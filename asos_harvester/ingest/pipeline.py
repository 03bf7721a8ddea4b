"""Extraction waterfall: try each strategy in order until one yields products."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from asos_harvester import metrics
from asos_harvester.ingest import payload_parser
from asos_harvester.ingest.api_client import ApiFallbackClient, ApiOptions
from asos_harvester.ingest.catalog_locator import (
    PRIMARY_PRODUCT_PATHS,
    SECONDARY_PRODUCT_PATHS,
    locate_detail_product,
    locate_json_ld_product,
    locate_pagination,
    locate_products,
)
from asos_harvester.ingest import dom_extractor as dom
from asos_harvester.ingest.dom_extractor import DomHeuristicExtractor, extract_id_from_url
from asos_harvester.ingest.pagination import PaginationInfo

logger = logging.getLogger(__name__)

RawProduct = Dict[str, Any]


class ExtractionMethod(str, Enum):
    """Which strategy produced a page's products."""

    PRIMARY_PAYLOAD = "primary-payload"
    API = "api"
    SECONDARY_PAYLOAD = "secondary-payload"
    DOM_HEURISTIC = "dom-heuristic"


@dataclass
class ExtractionResult:
    """Products recovered from one page by exactly one strategy."""

    method: ExtractionMethod
    products: List[RawProduct] = field(default_factory=list)
    pagination: Optional[PaginationInfo] = None


@dataclass
class ApiContext:
    """What the API fallback needs to reproduce a listing page."""

    keyword: str
    page_index: int = 0  # 0-indexed
    options: ApiOptions = field(default_factory=ApiOptions)


# A strategy returns a result, or None for a miss
Strategy = Callable[[str, Optional[ApiContext], Optional[str]], Optional[ExtractionResult]]
DetailStrategy = Callable[[str, Optional[str], Optional[str]], Optional[ExtractionResult]]


class ExtractionPipeline:
    """
    Run extraction strategies in a fixed order; the first non-empty one wins.

    Listing order: primary payload, API fallback, secondary payload, DOM
    heuristics. Detail pages use the same contract over detail strategies.
    The pipeline holds no run state and may be shared between threads.
    """

    def __init__(
        self,
        api_client: Optional[ApiFallbackClient] = None,
        dom_extractor: Optional[DomHeuristicExtractor] = None,
    ):
        self.api_client = api_client or ApiFallbackClient()
        self.dom_extractor = dom_extractor or dom.dom_extractor

        self.strategies: List[Tuple[ExtractionMethod, Strategy]] = [
            (ExtractionMethod.PRIMARY_PAYLOAD, self._from_primary_payload),
            (ExtractionMethod.API, self._from_api),
            (ExtractionMethod.SECONDARY_PAYLOAD, self._from_secondary_payload),
            (ExtractionMethod.DOM_HEURISTIC, self._from_dom),
        ]
        self.detail_strategies: List[Tuple[ExtractionMethod, DetailStrategy]] = [
            (ExtractionMethod.PRIMARY_PAYLOAD, self._detail_from_primary_payload),
            (ExtractionMethod.API, self._detail_from_api),
            (ExtractionMethod.SECONDARY_PAYLOAD, self._detail_from_secondary_payload),
            (ExtractionMethod.DOM_HEURISTIC, self._detail_from_dom),
        ]

    def run(
        self,
        html: str,
        api_context: Optional[ApiContext] = None,
        page_url: Optional[str] = None,
    ) -> Optional[ExtractionResult]:
        """
        Extract listing products from a page.

        Args:
            html: Raw page body
            api_context: Keyword and page for the API fallback (None skips it)
            page_url: URL the page was fetched from

        Returns:
            The first non-empty ExtractionResult, or None if every strategy missed
        """
        for method, strategy in self.strategies:
            result = self._attempt(method, strategy, html, api_context, page_url)
            if result is not None:
                logger.info(f"Found {len(result.products)} products via {method.value} on {page_url}")
                metrics.record_extraction("listing", method.value)
                return result

        logger.warning(f"All extraction strategies failed for {page_url}")
        return None

    def run_detail(
        self,
        html: str,
        page_url: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> Optional[ExtractionResult]:
        """Extract the single product of a detail page (same contract as ``run``)."""
        product_id = product_id or (extract_id_from_url(page_url) if page_url else None)
        for method, strategy in self.detail_strategies:
            result = self._attempt(method, strategy, html, page_url, product_id)
            if result is not None:
                logger.info(f"Found detail product via {method.value} on {page_url}")
                metrics.record_extraction("detail", method.value)
                return result

        logger.warning(f"All detail extraction strategies failed for {page_url}")
        return None

    @staticmethod
    def _attempt(method: ExtractionMethod, strategy, *args) -> Optional[ExtractionResult]:
        """Run one strategy; anything other than non-empty products is a miss."""
        try:
            result = strategy(*args)
        except Exception as e:
            logger.warning(f"Extraction strategy {method.value} raised, treating as miss: {e}")
            return None
        if result is None or not result.products:
            logger.debug(f"Extraction strategy {method.value} missed")
            return None
        return result

    # ------------------------------------------------------------------
    # Listing strategies
    # ------------------------------------------------------------------

    def _from_primary_payload(self, html, api_context, page_url) -> Optional[ExtractionResult]:
        payload = payload_parser.extract_primary_payload(html)
        if payload is None:
            return None
        return ExtractionResult(
            method=ExtractionMethod.PRIMARY_PAYLOAD,
            products=locate_products(payload, PRIMARY_PRODUCT_PATHS),
            pagination=locate_pagination(payload),
        )

    def _from_api(self, html, api_context, page_url) -> Optional[ExtractionResult]:
        if api_context is None or not api_context.keyword:
            return None
        listing = self.api_client.fetch_listing(
            api_context.keyword, api_context.page_index, api_context.options
        )
        return ExtractionResult(
            method=ExtractionMethod.API,
            products=listing.products,
            pagination=listing.pagination,
        )

    def _from_secondary_payload(self, html, api_context, page_url) -> Optional[ExtractionResult]:
        payload = payload_parser.extract_secondary_payload(html)
        if payload is None:
            return None
        return ExtractionResult(
            method=ExtractionMethod.SECONDARY_PAYLOAD,
            products=locate_products(payload, SECONDARY_PRODUCT_PATHS),
            pagination=locate_pagination(payload),
        )

    def _from_dom(self, html, api_context, page_url) -> Optional[ExtractionResult]:
        return ExtractionResult(
            method=ExtractionMethod.DOM_HEURISTIC,
            products=self.dom_extractor.extract_from_markup(html, page_url),
        )

    # ------------------------------------------------------------------
    # Detail strategies
    # ------------------------------------------------------------------

    @staticmethod
    def _single(method: ExtractionMethod, product: Optional[RawProduct]) -> Optional[ExtractionResult]:
        if not product:
            return None
        return ExtractionResult(method=method, products=[product])

    def _detail_from_primary_payload(self, html, page_url, product_id) -> Optional[ExtractionResult]:
        payload = payload_parser.extract_primary_payload(html)
        return self._single(ExtractionMethod.PRIMARY_PAYLOAD, locate_detail_product(payload))

    def _detail_from_api(self, html, page_url, product_id) -> Optional[ExtractionResult]:
        if not product_id:
            return None
        records = self.api_client.fetch_stock_price(product_id)
        for record in records:
            if str(record.get("productId", "")) != str(product_id):
                continue
            variants = [v for v in record.get("variants") or [] if isinstance(v, dict)]
            product: RawProduct = {
                "id": product_id,
                "productCode": record.get("productCode"),
                "price": record.get("productPrice"),
            }
            if variants:
                product["isInStock"] = any(v.get("isInStock") for v in variants)
            return self._single(ExtractionMethod.API, product)
        return None

    def _detail_from_secondary_payload(self, html, page_url, product_id) -> Optional[ExtractionResult]:
        product = locate_detail_product(payload_parser.extract_secondary_payload(html))
        if product is None:
            product = locate_json_ld_product(payload_parser.extract_json_ld(html))
        return self._single(ExtractionMethod.SECONDARY_PAYLOAD, product)

    def _detail_from_dom(self, html, page_url, product_id) -> Optional[ExtractionResult]:
        products = self.dom_extractor.extract_detail_from_markup(html, page_url)
        return self._single(ExtractionMethod.DOM_HEURISTIC, products[0] if products else None)
