"""Locate product arrays and pagination blocks inside parsed payloads."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from asos_harvester.ingest.pagination import PaginationInfo

logger = logging.getLogger(__name__)

Path = Tuple[str, ...]

# window.asos and dedicated catalog scripts
PRIMARY_PRODUCT_PATHS: Sequence[Path] = (
    ("plp", "products"),
    ("search", "products"),
    ("plp", "results"),
    ("search", "results"),
    ("pageProps", "searchResults", "products"),
    ("pageProps", "products"),
    ("products",),
)

# __NEXT_DATA__ / __INITIAL_STATE__ hydration data
SECONDARY_PRODUCT_PATHS: Sequence[Path] = (
    ("props", "pageProps", "searchResults", "products"),
    ("props", "pageProps", "products"),
    ("props", "pageProps", "initialState", "search", "products"),
    ("props", "pageProps", "initialState", "plp", "products"),
    ("search", "products"),
    ("plp", "products"),
    ("products",),
)

# Search API response
API_PRODUCT_PATHS: Sequence[Path] = (
    ("products",),
    ("data", "products"),
)

# Detail page payloads (window.asos / __NEXT_DATA__)
DETAIL_PRODUCT_PATHS: Sequence[Path] = (
    ("pdp", "product"),
    ("product",),
    ("props", "pageProps", "product"),
    ("props", "pageProps", "initialState", "product"),
    ("pageProps", "product"),
)

PAGINATION_PATHS: Sequence[Path] = (
    ("plp", "pagination"),
    ("search", "pagination"),
    ("plp", "paging"),
    ("pagination",),
    ("props", "pageProps", "searchResults", "pagination"),
    ("props", "pageProps", "pagination"),
    ("plp",),
    ("search",),
    ("props", "pageProps", "searchResults"),
)


def get_path(data: Any, path: Iterable[str]) -> Any:
    """Walk nested mappings along ``path``; None if any step is missing."""
    node = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
        if node is None:
            return None
    return node


def locate_products(
    payload: Optional[Dict[str, Any]],
    paths: Sequence[Path] = PRIMARY_PRODUCT_PATHS,
) -> List[Dict[str, Any]]:
    """
    Return the first non-empty products array found at a known path.

    Entries that are not mappings are dropped. Missing or empty arrays at
    every path yield an empty list.
    """
    if not isinstance(payload, dict):
        return []

    for path in paths:
        candidate = get_path(payload, path)
        if not isinstance(candidate, list) or not candidate:
            continue
        products = [item for item in candidate if isinstance(item, dict)]
        if products:
            logger.debug(f"Found {len(products)} products at {'.'.join(path)}")
            return products

    logger.debug(f"No products at any known path (top-level keys: {sorted(payload)[:10]})")
    return []


def locate_pagination(
    payload: Optional[Dict[str, Any]],
    paths: Sequence[Path] = PAGINATION_PATHS,
) -> Optional[PaginationInfo]:
    """Return pagination from the first path holding a usable block."""
    if not isinstance(payload, dict):
        return None

    for path in paths:
        block = get_path(payload, path)
        if isinstance(block, dict):
            info = PaginationInfo.from_mapping(block)
            if info is not None:
                return info
    return None


def locate_detail_product(payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the single product record of a detail page payload."""
    if not isinstance(payload, dict):
        return None

    for path in DETAIL_PRODUCT_PATHS:
        candidate = get_path(payload, path)
        if isinstance(candidate, dict) and candidate:
            return candidate
    return None


def locate_json_ld_product(objects: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Return the first schema.org Product among JSON-LD objects.

    ProductGroup containers resolve to their first variant when they carry no
    offers of their own.
    """
    for obj in objects:
        obj_type = obj.get("@type", "")
        if isinstance(obj_type, list):
            obj_type = obj_type[0] if obj_type else ""

        if obj_type == "Product":
            return obj
        if obj_type == "ProductGroup":
            variants = obj.get("hasVariant")
            if not obj.get("offers") and isinstance(variants, list):
                for variant in variants:
                    if isinstance(variant, dict):
                        merged = dict(obj)
                        merged.update({k: v for k, v in variant.items() if v is not None})
                        return merged
            return obj
    return None
