"""Price-range filtering for canonical products.

Missing data is never a reason to drop a product: an unset bound or an
unknown price always passes.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


def _price_of(product: Any) -> Optional[float]:
    if isinstance(product, dict):
        return product.get("price_value")
    return getattr(product, "price_value", None)


def passes(product: Any, min_price: Optional[float] = None, max_price: Optional[float] = None) -> bool:
    """
    Check if a product's price is within the bounds.

    Args:
        product: CanonicalProduct (or a record dict with ``price_value``)
        min_price: Inclusive lower bound, or None
        max_price: Inclusive upper bound, or None

    Returns:
        False only when a bound is set and the known price violates it
    """
    price = _price_of(product)
    if price is None:
        return True  # Can't filter without price

    if min_price is not None and price < min_price:
        return False

    if max_price is not None and price > max_price:
        return False

    return True


@dataclass
class PriceFilter:
    """Price bounds for a run."""

    min_price: Optional[float] = None
    max_price: Optional[float] = None

    @property
    def active(self) -> bool:
        return self.min_price is not None or self.max_price is not None

    def passes(self, product: Any) -> bool:
        """Check one product against this filter's bounds."""
        return passes(product, self.min_price, self.max_price)

