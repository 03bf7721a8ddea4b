"""
Crawl orchestration: turn fetched pages into saved product records.

Per listing page: extract -> normalize -> filter -> dedupe -> save or
discard -> paginate or stop. In two-hop mode listing pages enqueue detail
pages instead of saving, and detail pages merge the listing record (seed)
with what they extract.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlparse

from asos_harvester import metrics
from asos_harvester.config import HarvestConfig, settings
from asos_harvester.ingest.api_client import ApiOptions
from asos_harvester.ingest.filters import PriceFilter
from asos_harvester.ingest.pagination import PaginationController, page_from_url
from asos_harvester.ingest.pipeline import ApiContext, ExtractionMethod, ExtractionPipeline, RawProduct
from asos_harvester.normalize.processor import CanonicalProduct, ProductNormalizer, product_normalizer
from asos_harvester.worker.state import CrawlState

logger = logging.getLogger(__name__)

LISTING = "LISTING"
DETAIL = "DETAIL"

Enqueue = Callable[[str, Dict[str, Any]], None]
PersistBatch = Callable[[List[Dict[str, Any]]], None]


def keyword_from_url(url: Optional[str]) -> Optional[str]:
    """Return the ``q`` search parameter of a listing URL, if any."""
    if not url:
        return None
    try:
        params = dict(parse_qsl(urlparse(url).query))
    except ValueError:
        return None
    keyword = (params.get("q") or "").strip()
    return keyword or None


def _merge_seed(seed: Mapping[str, Any], detail: Mapping[str, Any]) -> RawProduct:
    """Overlay usable detail-page values onto the listing record."""
    merged: RawProduct = dict(seed)
    for key, value in detail.items():
        if value is None or value == "" or value == [] or value == {}:
            continue
        merged[key] = value
    return merged


class CrawlOrchestrator:
    """
    Drive one harvest run over pages supplied by an external fetcher.

    The orchestrator never fetches. It receives page bodies through
    ``handle_page``, schedules more work through ``enqueue`` and hands saved
    records to ``persist_batch``. ``handle_page`` may be called from several
    threads at once.
    """

    def __init__(
        self,
        config: HarvestConfig,
        enqueue: Enqueue,
        persist_batch: PersistBatch,
        pipeline: Optional[ExtractionPipeline] = None,
        normalizer: Optional[ProductNormalizer] = None,
        pagination: Optional[PaginationController] = None,
        batch_size: Optional[int] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run input
            enqueue: Callback taking (url, metadata) to schedule a page
            persist_batch: Callback taking a list of output records
            pipeline: Extraction pipeline (a default one is created if omitted)
            normalizer: Product normalizer
            pagination: Pagination controller
            batch_size: Records buffered before persist_batch is called
        """
        self.config = config
        self.enqueue = enqueue
        self.persist_batch = persist_batch
        self.pipeline = pipeline or ExtractionPipeline()
        self.normalizer = normalizer or product_normalizer
        self.pagination = pagination or PaginationController()
        self.batch_size = max(1, batch_size or settings.output_batch_size)

        self.state = CrawlState(target=config.results_wanted)
        self.price_filter = PriceFilter(config.min_price, config.max_price)
        self.api_options = ApiOptions(sort_by=config.sort_by)
        if self.price_filter.active:
            logger.info(f"Price filter [{config.min_price}, {config.max_price}] active")

        self._buffer: List[Dict[str, Any]] = []
        self._buffer_lock = threading.Lock()

    @property
    def saved_count(self) -> int:
        return self.state.saved

    def handle_page(self, url: str, body: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        """
        Process one fetched page.

        Args:
            url: URL the body was fetched from
            body: Raw page body
            metadata: Request metadata (``label``, ``page``, ``offset``, ``seed``)
        """
        metadata = metadata or {}
        label = metadata.get("label") or LISTING

        if label == DETAIL:
            self._handle_detail(url, body, metadata)
        else:
            self._handle_listing(url, body, metadata)

    def flush(self) -> None:
        """Persist any buffered records and log the run summary."""
        with self._buffer_lock:
            if self._buffer:
                self._persist(list(self._buffer))
                self._buffer.clear()

        summary = self.state.snapshot()
        if summary["saved"] < summary["target"]:
            logger.warning(
                f"Harvest finished with {summary['saved']}/{summary['target']} products"
            )
        else:
            logger.info(f"Harvest finished with {summary['saved']} products")

    def handle_failure(self, url: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        """
        Account for a page the fetcher gave up on.

        A failed detail page frees its claim so another product (or the next
        listing page) can take its place.

        Args:
            url: URL that could not be fetched
            metadata: Request metadata the URL was enqueued with
        """
        metadata = metadata or {}
        label = metadata.get("label") or LISTING
        metrics.record_page(label.lower(), "failed")
        if label == DETAIL:
            logger.warning(f"Detail page failed, releasing claim: {url}")
            self._release_detail(metadata.get("product_id"))

    # ------------------------------------------------------------------
    # Listing pages
    # ------------------------------------------------------------------

    def api_context_for(self, url: str, metadata: Mapping[str, Any]) -> Optional[ApiContext]:
        """
        Build the API fallback context for a listing page.

        The keyword is the URL's ``q`` parameter; when the run has no start
        URL the configured keyword is used. Category URLs without a keyword
        get no API fallback.
        """
        keyword = keyword_from_url(url)
        if keyword is None and not self.config.start_url:
            keyword = self.config.keyword
        if not keyword:
            return None

        page = metadata.get("page") or page_from_url(url)
        try:
            page_index = max(0, int(page) - 1)
        except (TypeError, ValueError):
            page_index = 0
        return ApiContext(keyword=keyword, page_index=page_index, options=self.api_options)

    def _handle_listing(self, url: str, body: str, metadata: Mapping[str, Any]) -> None:
        if self.state.should_stop():
            logger.info(f"Target reached, skipping listing {url}")
            metrics.record_page("listing", "skipped")
            return

        result = self.pipeline.run(body, self.api_context_for(url, metadata), url)
        if result is None:
            logger.warning(f"No products found on {url}")
            metrics.record_page("listing", "empty")
            return

        candidates = self._prepare(result.products, result.method, url)

        if self.config.detail_mode:
            self._request_details(candidates)
            needs_more = self.state.pending_details() < self.state.remaining()
        else:
            self._save(candidates)
            needs_more = not self.state.should_stop()

        metrics.record_page("listing", "ok")

        next_url = self.pagination.next_url(url, result.pagination, len(result.products))
        if not next_url:
            return

        offset = int(metadata.get("offset") or 0) + len(result.products)
        next_metadata = {"label": LISTING, "page": page_from_url(next_url), "offset": offset}

        if needs_more:
            self.enqueue(next_url, next_metadata)
            logger.info(f"Enqueued next listing page: {next_url}")
        elif self.config.detail_mode and not self.state.should_stop():
            self.state.defer_listing(next_url, next_metadata)
            logger.info(f"Parked next listing page until detail pages fall short: {next_url}")
            self._refill()
        else:
            logger.info(f"No further listing pages needed after {url}")

    def _prepare(
        self,
        raw_products: List[RawProduct],
        method: Optional[ExtractionMethod],
        source_url: str,
    ) -> List[Tuple[RawProduct, CanonicalProduct]]:
        """Normalize and price-filter raw products, keeping listing order."""
        prepared: List[Tuple[RawProduct, CanonicalProduct]] = []
        for raw in raw_products:
            product = self.normalizer.normalize(raw, method, source_url)
            if not product.id:
                logger.debug(f"Dropping product without id from {source_url}")
                metrics.record_discarded("missing_id")
                continue
            if not self.price_filter.passes(product):
                metrics.record_discarded("price")
                continue
            prepared.append((raw, product))
        return prepared

    def _save(self, candidates: List[Tuple[RawProduct, CanonicalProduct]]) -> None:
        records: List[Dict[str, Any]] = []
        for _, product in candidates:
            if self.state.try_save(product.id):
                records.append(product.to_record())
            elif self.state.should_stop():
                metrics.record_discarded("target_reached")
            else:
                logger.debug(f"Duplicate product {product.id}")
                metrics.record_discarded("duplicate")

        if records:
            metrics.record_saved(len(records))
            self._buffer_records(records)

    def _request_details(self, candidates: List[Tuple[RawProduct, CanonicalProduct]]) -> None:
        requested = 0
        deferred = 0
        for raw, product in candidates:
            detail_url = self.pagination.detail_url(product)
            if not detail_url:
                continue
            metadata = {"label": DETAIL, "product_id": product.id, "seed": raw}
            if self.state.try_request_detail(product.id):
                self.enqueue(detail_url, metadata)
                requested += 1
            elif self.state.defer_detail(product.id, detail_url, metadata):
                deferred += 1
        logger.info(f"Enqueued {requested} detail pages ({deferred} held back)")

    def _release_detail(self, product_id: Optional[str]) -> None:
        """Drop a detail claim and hand out held-back work in its place."""
        if product_id:
            self.state.release_detail(product_id)
        self._refill()

    def _refill(self) -> None:
        for url, metadata in self.state.claim_deferred():
            self.enqueue(url, metadata)
            logger.info(f"Enqueued held-back {metadata.get('label')} page: {url}")

    # ------------------------------------------------------------------
    # Detail pages
    # ------------------------------------------------------------------

    def _handle_detail(self, url: str, body: str, metadata: Mapping[str, Any]) -> None:
        product_id = metadata.get("product_id")
        seed = metadata.get("seed") or {}

        if self.state.should_stop():
            logger.info(f"Target reached, skipping detail {url}")
            metrics.record_page("detail", "skipped")
            return

        result = self.pipeline.run_detail(body, url, product_id)
        if result is None and not seed:
            logger.warning(f"No product found on detail page {url}")
            metrics.record_page("detail", "empty")
            self._release_detail(product_id)
            return

        merged = _merge_seed(seed, result.products[0]) if result else dict(seed)
        if product_id:
            merged["id"] = product_id

        method = result.method if result else None
        candidates = self._prepare([merged], method, url)
        self._save(candidates)
        if not candidates:
            self._release_detail(product_id)
        metrics.record_page("detail", "ok" if result else "seed_only")

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _buffer_records(self, records: List[Dict[str, Any]]) -> None:
        with self._buffer_lock:
            self._buffer.extend(records)
            while len(self._buffer) >= self.batch_size:
                batch = self._buffer[: self.batch_size]
                del self._buffer[: self.batch_size]
                self._persist(batch)

    def _persist(self, batch: List[Dict[str, Any]]) -> None:
        """Hand one batch to the sink; caller holds the buffer lock."""
        self.persist_batch(batch)
        metrics.record_batch_persisted()
        logger.info(f"Saved batch of {len(batch)} products")
