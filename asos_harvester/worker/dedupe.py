"""Run-scoped product identity deduplication."""

import logging
import threading
from typing import Set

logger = logging.getLogger(__name__)


class Deduplicator:
    """Tracks product ids already emitted during one run.

    Thread-safe. Ids must be non-empty strings.
    """

    def __init__(self):
        self._seen: Set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def seen(self, product_id: str) -> bool:
        """
        Check if a product id was already marked.

        Args:
            product_id: Canonical product id

        Returns:
            True if marked before, False otherwise (always False for empty ids)
        """
        if not product_id:
            return False
        with self._lock:
            return product_id in self._seen

    def mark(self, product_id: str) -> bool:
        """
        Mark a product id as emitted.

        Args:
            product_id: Canonical product id

        Returns:
            True if the id was newly marked, False if it was already marked

        Raises:
            ValueError: If the id is empty or not a string
        """
        if not isinstance(product_id, str) or not product_id:
            raise ValueError(f"Cannot dedupe on empty product id: {product_id!r}")
        with self._lock:
            if product_id in self._seen:
                return False
            self._seen.add(product_id)
        logger.debug(f"Marked product as seen: {product_id}")
        return True
