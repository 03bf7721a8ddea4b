"""Command-line entry point: run one harvest end to end."""

import json
import logging
import sys
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

import httpx

from asos_harvester.config import HarvestConfig, settings
from asos_harvester.ingest.api_client import FETCH_ERRORS, ApiFallbackClient
from asos_harvester.ingest.http_client import fetch_with_policy, get_policy
from asos_harvester.ingest.pagination import build_search_url, page_from_url
from asos_harvester.ingest.pipeline import ExtractionPipeline
from asos_harvester.logging_config import get_logger, setup_logging
from asos_harvester.worker.orchestrator import LISTING, CrawlOrchestrator

logger = logging.getLogger(__name__)


class JsonLinesWriter:
    """Append output records to a JSON-lines file."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path or settings.output_path)
        self._lock = threading.Lock()
        self.written = 0

    def write_batch(self, records: List[Dict[str, Any]]) -> None:
        if not records:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                for record in records:
                    f.write(json.dumps(record, ensure_ascii=False, default=str))
                    f.write("\n")
            self.written += len(records)
        logger.debug(f"Wrote {len(records)} records to {self.path}")


def proxy_url_from_config(proxy_configuration: Any) -> Optional[str]:
    """
    Pick a proxy URL from the opaque proxy configuration.

    Accepts a plain URL string or a mapping with ``proxyUrls``. Anything
    else (e.g. a hosted proxy group) cannot be resolved here and means no proxy.
    """
    if not proxy_configuration:
        return None
    if isinstance(proxy_configuration, str):
        return proxy_configuration
    if isinstance(proxy_configuration, dict):
        urls = proxy_configuration.get("proxyUrls") or []
        if urls:
            return str(urls[0])
    logger.warning("Proxy configuration not understood, running without proxy")
    return None


class HarvestRunner:
    """
    Reference fetch loop around CrawlOrchestrator.

    Keeps a FIFO request queue (each URL fetched once), drains it with a
    bounded thread pool and writes batches through JsonLinesWriter.
    """

    def __init__(
        self,
        config: HarvestConfig,
        writer: Optional[JsonLinesWriter] = None,
        client: Optional[httpx.Client] = None,
        max_workers: Optional[int] = None,
    ):
        self.config = config
        self.writer = writer or JsonLinesWriter()
        self.max_workers = max(1, max_workers or settings.max_concurrency)
        self.page_policy = get_policy("asos_page")

        proxy = proxy_url_from_config(config.proxy_configuration)
        self._owns_client = client is None
        self.client = client or httpx.Client(follow_redirects=True, proxy=proxy)
        self.api_client = ApiFallbackClient(proxy=proxy)

        self._queue: Deque[Tuple[str, Dict[str, Any]]] = deque()
        self._seen_urls: Set[str] = set()
        self._queue_lock = threading.Lock()

        self.orchestrator = CrawlOrchestrator(
            config,
            enqueue=self.enqueue,
            persist_batch=self.writer.write_batch,
            pipeline=ExtractionPipeline(api_client=self.api_client),
        )

    def start_url(self) -> str:
        return self.config.start_url or build_search_url(self.config.keyword)

    def enqueue(self, url: str, metadata: Dict[str, Any]) -> None:
        with self._queue_lock:
            if url in self._seen_urls:
                logger.debug(f"Already queued: {url}")
                return
            self._seen_urls.add(url)
            self._queue.append((url, metadata))

    def _dequeue(self) -> Optional[Tuple[str, Dict[str, Any]]]:
        with self._queue_lock:
            if not self._queue:
                return None
            return self._queue.popleft()

    def fetch(self, url: str) -> str:
        """Fetch a page body with the page policy."""
        response = fetch_with_policy(self.client, url, self.page_policy)
        return response.text

    def _process(self, url: str, metadata: Dict[str, Any]) -> None:
        log = get_logger(__name__, url=url, label=metadata.get("label"))
        if self.orchestrator.state.should_stop():
            log.debug(f"Skipping {url}, target reached")
            return
        log.info(f"Processing {metadata.get('label')} page: {url}")
        try:
            body = self.fetch(url)
        except FETCH_ERRORS:
            self.orchestrator.handle_failure(url, metadata)
            raise
        self.orchestrator.handle_page(url, body, metadata)

    def run(self) -> int:
        """
        Run the harvest until the queue drains or the target is reached.

        Returns:
            Number of products saved
        """
        start = self.start_url()
        logger.info(
            f"Starting harvest: {start} (target {self.config.results_wanted}, "
            f"detail_mode={self.config.detail_mode})"
        )
        self.enqueue(start, {"label": LISTING, "page": page_from_url(start), "offset": 0})

        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                running: Dict[Future, str] = {}
                while True:
                    while len(running) < self.max_workers:
                        item = self._dequeue()
                        if item is None:
                            break
                        url, metadata = item
                        running[pool.submit(self._process, url, metadata)] = url

                    if not running:
                        break

                    done, _ = wait(running, return_when=FIRST_COMPLETED)
                    for future in done:
                        url = running.pop(future)
                        try:
                            future.result()
                        except FETCH_ERRORS as e:
                            logger.warning(f"Request failed for {url}: {e}")
                        except Exception as e:
                            logger.error(f"Error handling {url}: {e}", exc_info=True)
        finally:
            self.orchestrator.flush()
            self.close()

        return self.orchestrator.saved_count

    def close(self) -> None:
        self.api_client.close()
        if self._owns_client:
            self.client.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run a harvest.

    Args:
        argv: Optional ``[input_json_path]``; defaults to sys.argv[1:]

    Returns:
        Process exit code
    """
    args = sys.argv[1:] if argv is None else argv
    setup_logging()

    config = HarvestConfig.from_file(args[0]) if args else HarvestConfig()
    runner = HarvestRunner(config)
    saved = runner.run()

    logger.info(f"Done. Saved {saved} products to {runner.writer.path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
