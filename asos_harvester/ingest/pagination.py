"""Pagination metadata and next-page decisions for listing pages."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, quote, urlencode, urljoin, urlparse, urlunparse

from asos_harvester.config import settings

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def page_from_url(url: str) -> int:
    """Return the 1-indexed ``page`` query parameter of a URL (default 1)."""
    try:
        params = dict(parse_qsl(urlparse(url).query, keep_blank_values=True))
    except ValueError:
        return 1
    page = _to_int(params.get("page"))
    return page if page and page > 0 else 1


def set_query_param(url: str, name: str, value: str) -> str:
    """Return ``url`` with one query parameter set, preserving the others."""
    parsed = urlparse(url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != name]
    params.append((name, value))
    return urlunparse(parsed._replace(query=urlencode(params)))


@dataclass
class PaginationInfo:
    """Pagination state of one listing page (page is 1-indexed)."""

    page: int = 1
    page_size: Optional[int] = None
    total_pages: Optional[int] = None
    total_results: Optional[int] = None

    @classmethod
    def from_mapping(cls, block: Mapping[str, Any]) -> Optional["PaginationInfo"]:
        """
        Build pagination from a payload pagination block.

        Understands ``page``/``currentPage``, ``pageSize``/``limit``,
        ``totalPages``, ``totalResults``/``itemCount``/``total`` and
        ``offset``. Returns None when the block carries nothing usable.
        """
        if not isinstance(block, Mapping):
            return None

        page_size = _to_int(block.get("pageSize") or block.get("limit"))
        total_results = _to_int(
            block.get("totalResults") if block.get("totalResults") is not None
            else block.get("itemCount") if block.get("itemCount") is not None
            else block.get("total")
        )
        total_pages = _to_int(block.get("totalPages"))
        page = _to_int(block.get("page") or block.get("currentPage"))
        offset = _to_int(block.get("offset"))

        if page is None and offset is not None and page_size:
            page = offset // page_size + 1
        if total_pages is None and total_results is not None and page_size:
            total_pages = math.ceil(total_results / page_size)

        if page is None and total_pages is None and total_results is None:
            return None
        return cls(
            page=page if page and page > 0 else 1,
            page_size=page_size,
            total_pages=total_pages,
            total_results=total_results,
        )


def build_search_url(keyword: str, page: int = 1) -> str:
    """Build the keyword search listing URL for a 1-indexed page."""
    base = urljoin(settings.site_base_url, settings.search_path)
    return f"{base}?q={quote(keyword)}&page={max(1, page)}"


class PaginationController:
    """Decide which listing page comes next and when a listing is exhausted."""

    def next_url(
        self,
        current_url: str,
        pagination: Optional[PaginationInfo],
        products_on_page: int,
    ) -> Optional[str]:
        """
        Compute the next listing URL.

        Args:
            current_url: URL of the page just processed
            pagination: Pagination from the page payload or API, if any
            products_on_page: Number of products the page yielded

        Returns:
            Next page URL, or None when there is nothing more to fetch
        """
        if products_on_page <= 0:
            logger.debug(f"No products on {current_url}, not paginating")
            return None

        current_page = pagination.page if pagination else page_from_url(current_url)

        if pagination and pagination.total_pages is not None:
            if current_page >= pagination.total_pages:
                logger.info(
                    f"Reached last page ({current_page}/{pagination.total_pages}) for {current_url}"
                )
                return None

        return set_query_param(current_url, "page", str(current_page + 1))

    def detail_url(self, product: Any) -> Optional[str]:
        """Absolute detail page URL of a canonical or raw product, if it has one."""
        url = product.get("url") if isinstance(product, Mapping) else getattr(product, "url", None)
        if not url or not isinstance(url, str):
            return None
        if url.startswith("//"):
            return f"https:{url}"
        return urljoin(settings.site_base_url, url)
