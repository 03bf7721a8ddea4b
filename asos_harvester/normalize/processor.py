"""Normalize raw product records from any extraction strategy into one schema."""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from asos_harvester.config import settings
from asos_harvester.ingest.dom_extractor import currency_from_text, parse_price
from asos_harvester.ingest.pipeline import ExtractionMethod

logger = logging.getLogger(__name__)

Path = Tuple[str, ...]

# images.asos-media.com/products/... written without a scheme
_HOST_WITH_PATH = re.compile(r"^[a-z0-9-]+(?:\.[a-z0-9-]+)+\.[a-z]{2,}/", re.IGNORECASE)


@dataclass(frozen=True)
class CanonicalProduct:
    """Canonical product record persisted as output."""

    id: str
    url: Optional[str]
    title: Optional[str] = None
    brand: Optional[str] = None
    currency: Optional[str] = None
    price_value: Optional[float] = None
    price_text: Optional[str] = None
    original_price_value: Optional[float] = None
    is_marked_down: bool = False
    is_in_stock: bool = True
    image_url: Optional[str] = None
    color: Optional[str] = None
    badge: Optional[str] = None
    description: Optional[str] = None
    product_code: Optional[str] = None
    product_type: Optional[str] = None
    source_url: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        """Plain dict for persistence."""
        return asdict(self)


# Per-field resolution order: the first path holding a usable value wins.
# Paths cover the listing payload, search API, __NEXT_DATA__, JSON-LD and
# DOM-heuristic record shapes.
FIELD_SOURCES: Dict[str, Sequence[Path]] = {
    "id": (("id",), ("productId",), ("product_id",), ("sku",)),
    "title": (("name",), ("title",), ("productTitle",), ("productName",)),
    "brand": (("brandName",), ("brand", "name"), ("brand",)),
    "price_value": (
        ("price", "current", "value"),
        ("price", "value"),
        ("price_value",),
        ("price",),
        ("offers", "price"),
        ("offers", "lowPrice"),
    ),
    "price_text": (
        ("price", "current", "text"),
        ("price", "text"),
        ("price_text",),
        ("price",),
        ("offers", "price"),
    ),
    "original_price_value": (
        ("price", "previous", "value"),
        ("price", "rrp", "value"),
        ("price", "was", "value"),
        ("previous_price_value",),
    ),
    "original_price_text": (
        ("price", "previous", "text"),
        ("price", "rrp", "text"),
        ("price", "was", "text"),
        ("previous_price_text",),
    ),
    "currency": (
        ("price", "currency"),
        ("currency",),
        ("priceCurrency",),
        ("offers", "priceCurrency"),
    ),
    "is_marked_down": (("price", "isMarkedDown"), ("isMarkedDown",), ("is_marked_down",)),
    "no_size": (("isNoSize",),),
    "in_stock": (("isInStock",), ("is_in_stock",), ("inStock",)),
    "availability": (("offers", "availability"), ("availability",)),
    "url": (("url",), ("link",), ("href",)),
    "image_url": (
        ("imageUrl",),
        ("image_url",),
        ("image",),
        ("images",),
        ("media", "images"),
    ),
    "color": (("colour",), ("color",), ("colourName",)),
    "badges": (("badges",), ("badge",)),
    "description": (("description",), ("productDescription",)),
    "product_code": (("productCode",), ("product_code",), ("mpn",), ("sku",)),
    "product_type": (("productType",), ("product_type",)),
}


def _usable(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def _first_item(value: Any) -> Any:
    """Unwrap JSON-LD style single-element lists (offers, images)."""
    if isinstance(value, list) and value:
        return value[0]
    return value


def _lookup(raw: Mapping[str, Any], path: Path) -> Any:
    node: Any = raw
    for key in path:
        node = _first_item(node)
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
        if node is None:
            return None
    return node


def resolve(raw: Mapping[str, Any], field: str) -> Any:
    """Return the first usable value for ``field`` from FIELD_SOURCES."""
    for path in FIELD_SOURCES[field]:
        value = _lookup(raw, path)
        if _usable(value):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    """Scalar or {name|text|label} mapping to stripped text."""
    if isinstance(value, Mapping):
        value = value.get("text") or value.get("name") or value.get("label")
    if value is None or isinstance(value, (list, dict, bool)):
        return None
    text = str(value).strip()
    return text or None


def _as_number(value: Any) -> Optional[float]:
    """Numeric value; strings are parsed as display text."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return parse_price(value)
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1", "y"):
            return True
        if lowered in ("false", "no", "0", "n"):
            return False
    return None


def normalize_image_url(url: Optional[str]) -> Optional[str]:
    """
    Make an image URL absolute and strip its query string.

    Protocol-relative URLs and scheme-less host URLs
    ("images.asos-media.com/products/...") get https; bare paths and file
    names get the media base prefix.
    """
    if not url or not isinstance(url, str):
        return None
    clean = url.strip()
    if not clean:
        return None
    if clean.startswith("//"):
        clean = f"https:{clean}"
    elif not clean.startswith("http"):
        if _HOST_WITH_PATH.match(clean.lstrip("/")):
            clean = f"https://{clean.lstrip('/')}"
        else:
            clean = f"{settings.media_base_url.rstrip('/')}/{clean.lstrip('/')}"
    return clean.split("?")[0]


def normalize_product_url(url: Optional[str], product_id: str) -> Optional[str]:
    """Absolute product URL; falls back to ``/prd/<id>`` when the record has none."""
    base = settings.site_base_url.rstrip("/")
    if isinstance(url, str) and url.strip():
        clean = url.strip()
        if clean.startswith("//"):
            return f"https:{clean}"
        if clean.startswith("http"):
            return clean
        return f"{base}/{clean.lstrip('/')}"
    if product_id:
        return f"{base}/prd/{product_id}"
    return None


class ProductNormalizer:
    """Map raw records of every extraction strategy onto CanonicalProduct.

    ``normalize`` is total: malformed values resolve to None (or the documented
    default) instead of raising. Records whose id resolves to an empty string
    must be dropped by the caller.
    """

    def normalize(
        self,
        raw: Mapping[str, Any],
        method: Union[ExtractionMethod, str, None] = None,
        source_url: Optional[str] = None,
    ) -> CanonicalProduct:
        """
        Normalize one raw product.

        Args:
            raw: Raw record from an extraction strategy
            method: Strategy that produced the record (for logging)
            source_url: Page the record was extracted from

        Returns:
            CanonicalProduct
        """
        if not isinstance(raw, Mapping):
            logger.debug(f"Non-mapping raw product from {method}: {type(raw).__name__}")
            raw = {}

        product_id = _as_text(resolve(raw, "id")) or ""

        price_text = _as_text(resolve(raw, "price_text"))
        price_value = _as_number(resolve(raw, "price_value"))
        if price_value is None:
            price_value = parse_price(price_text)

        original_price_value = _as_number(resolve(raw, "original_price_value"))
        if original_price_value is None:
            original_price_value = parse_price(_as_text(resolve(raw, "original_price_text")))

        explicit_markdown = _as_bool(resolve(raw, "is_marked_down")) is True
        is_marked_down = explicit_markdown or (
            original_price_value is not None
            and price_value is not None
            and original_price_value > price_value
        )

        currency = _as_text(resolve(raw, "currency")) or currency_from_text(price_text)

        return CanonicalProduct(
            id=product_id,
            url=normalize_product_url(_as_text(resolve(raw, "url")), product_id),
            title=_as_text(resolve(raw, "title")),
            brand=_as_text(resolve(raw, "brand")),
            currency=currency,
            price_value=price_value,
            price_text=price_text,
            original_price_value=original_price_value,
            is_marked_down=is_marked_down,
            is_in_stock=self._resolve_in_stock(raw),
            image_url=normalize_image_url(self._resolve_image(raw)),
            color=_as_text(resolve(raw, "color")),
            badge=self._resolve_badge(raw),
            description=_as_text(resolve(raw, "description")),
            product_code=_as_text(resolve(raw, "product_code")),
            product_type=_as_text(resolve(raw, "product_type")),
            source_url=source_url,
        )

    @staticmethod
    def _resolve_in_stock(raw: Mapping[str, Any]) -> bool:
        if _as_bool(resolve(raw, "no_size")) is True:
            return False
        explicit = _as_bool(resolve(raw, "in_stock"))
        if explicit is not None:
            return explicit
        availability = _as_text(resolve(raw, "availability"))
        if availability:
            lowered = availability.lower()
            if "outofstock" in lowered or "out_of_stock" in lowered or "soldout" in lowered:
                return False
        return True

    @staticmethod
    def _resolve_image(raw: Mapping[str, Any]) -> Optional[str]:
        value = resolve(raw, "image_url")
        value = _first_item(value)
        if isinstance(value, Mapping):
            value = value.get("url") or value.get("src") or value.get("contentUrl")
        return value if isinstance(value, str) else None

    @staticmethod
    def _resolve_badge(raw: Mapping[str, Any]) -> Optional[str]:
        value = resolve(raw, "badges")
        items = value if isinstance(value, list) else [value]
        texts: List[str] = []
        for item in items:
            text = _as_text(item)
            if isinstance(item, Mapping) and text is None:
                text = _as_text(item.get("type"))
            if text and text not in texts:
                texts.append(text)
        return ", ".join(texts) or None


product_normalizer = ProductNormalizer()
