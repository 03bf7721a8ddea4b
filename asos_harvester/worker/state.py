"""Run-wide crawl state shared by concurrent page handlers."""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from asos_harvester.worker.dedupe import Deduplicator

logger = logging.getLogger(__name__)

Request = Tuple[str, Dict[str, Any]]


@dataclass
class CrawlState:
    """Seen ids, saved count and stop flag for one run.

    Every read-modify-write goes through ``_lock`` so that two workers
    finishing pages at the same time can neither save the same id twice nor
    push the saved count past the target.

    In two-hop mode the state also holds the work that was held back while
    enough detail pages were in flight: detail requests over the cap and the
    next listing page. Both are handed out again when a claim is released.
    """

    target: int
    saved: int = 0
    stopped: bool = False
    dedupe: Deduplicator = field(default_factory=Deduplicator)
    requested_details: Set[str] = field(default_factory=set)
    abandoned_details: Set[str] = field(default_factory=set)
    deferred_details: Deque[Tuple[str, str, Dict[str, Any]]] = field(default_factory=deque)
    deferred_listing: Optional[Request] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def try_save(self, product_id: str) -> bool:
        """
        Reserve an output slot for a product.

        Returns:
            True if the product should be saved; False if the run already
            reached its target or the id was emitted before
        """
        with self._lock:
            if self.stopped or self.saved >= self.target:
                self.stopped = True
                return False
            if not self.dedupe.mark(product_id):
                return False
            self.saved += 1
            if self.saved >= self.target:
                self.stopped = True
                logger.info(f"Reached target of {self.target} products")
            return True

    def try_request_detail(self, product_id: str) -> bool:
        """Claim a detail fetch for an id not yet saved or requested.

        Claims are capped so that in-flight detail pages never exceed the
        number of products still needed.
        """
        with self._lock:
            if self.stopped or not self._claimable(product_id):
                return False
            if not self._has_capacity():
                return False
            self.requested_details.add(product_id)
            return True

    def defer_detail(self, product_id: str, url: str, metadata: Dict[str, Any]) -> bool:
        """Hold back a detail request that lost the claim race to the cap."""
        with self._lock:
            if self.stopped or not self._claimable(product_id):
                return False
            self.deferred_details.append((product_id, url, metadata))
            return True

    def defer_listing(self, url: str, metadata: Dict[str, Any]) -> None:
        """Park the next listing page until in-flight details fall short."""
        with self._lock:
            self.deferred_listing = (url, metadata)

    def release_detail(self, product_id: str) -> None:
        """Forget a detail claim whose page yielded nothing savable.

        The id is not claimed again: its detail URL was already fetched.
        """
        with self._lock:
            self.requested_details.discard(product_id)
            self.abandoned_details.add(product_id)

    def claim_deferred(self) -> List[Request]:
        """
        Hand out held-back work while more products are needed.

        Deferred detail requests go first, in listing order. The parked
        listing page is returned only once no deferred details are left.

        Returns:
            (url, metadata) requests to enqueue, possibly empty
        """
        with self._lock:
            claimed: List[Request] = []
            while self.deferred_details and not self.stopped and self._has_capacity():
                product_id, url, metadata = self.deferred_details.popleft()
                if self._claimable(product_id):
                    self.requested_details.add(product_id)
                    claimed.append((url, metadata))

            if (
                self.deferred_listing is not None
                and not self.deferred_details
                and not self.stopped
                and self._has_capacity()
            ):
                claimed.append(self.deferred_listing)
                self.deferred_listing = None
            return claimed

    def _claimable(self, product_id: str) -> bool:
        return (
            product_id not in self.requested_details
            and product_id not in self.abandoned_details
            and not self.dedupe.seen(product_id)
        )

    def _has_capacity(self) -> bool:
        return self._pending_details() < self.target - self.saved

    def _pending_details(self) -> int:
        return sum(1 for pid in self.requested_details if not self.dedupe.seen(pid))

    def should_stop(self) -> bool:
        with self._lock:
            return self.stopped

    def remaining(self) -> int:
        with self._lock:
            return max(0, self.target - self.saved)

    def pending_details(self) -> int:
        """Detail pages requested whose product has not been saved yet."""
        with self._lock:
            return self._pending_details()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "saved": self.saved,
                "target": self.target,
                "stopped": self.stopped,
                "seen": len(self.dedupe),
                "requested_details": len(self.requested_details),
                "deferred_details": len(self.deferred_details),
            }
