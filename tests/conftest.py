"""Shared fixtures: synthetic ASOS listing and detail pages."""

import json
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from asos_harvester.ingest.api_client import ApiFallbackClient, ApiListing
from asos_harvester.ingest.pipeline import ExtractionPipeline


def make_product(
    pid: int,
    name: Optional[str] = None,
    price: float = 25.0,
    previous: Optional[float] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """A product record shaped like the listing payload's entries."""
    current = {"value": price, "text": f"£{price:.2f}"}
    product: Dict[str, Any] = {
        "id": pid,
        "name": name or f"ASOS DESIGN product {pid}",
        "price": {"current": current, "currency": "GBP"},
        "url": f"men/asos-design/product-{pid}/prd/{pid}",
        "imageUrl": f"images.asos-media.com/products/product-{pid}/{pid}-1-black",
        "brandName": "ASOS DESIGN",
        "colour": "Black",
    }
    if previous is not None:
        product["price"]["previous"] = {"value": previous, "text": f"£{previous:.2f}"}
        product["price"]["isMarkedDown"] = True
    product.update(extra)
    return product


def window_asos_page(products: List[Dict[str, Any]], pagination: Optional[Dict[str, Any]] = None) -> str:
    """Listing page carrying the catalog in a minified ``window.asos`` assignment."""
    payload: Dict[str, Any] = {"plp": {"products": products}}
    if pagination is not None:
        payload["plp"]["pagination"] = pagination
    return (
        "<html><head><script>var a=1;window.asos = "
        + json.dumps(payload)
        + ";window.other={};</script></head><body></body></html>"
    )


def next_data_page(products: List[Dict[str, Any]]) -> str:
    """Listing page carrying the catalog only in ``__NEXT_DATA__``."""
    payload = {"props": {"pageProps": {"searchResults": {"products": products}}}}
    return (
        '<html><body><script id="__NEXT_DATA__" type="application/json">'
        + json.dumps(payload)
        + "</script></body></html>"
    )


def tile(pid: Optional[int], title: str, price: str, extra: str = "") -> str:
    href = f"/asos-design/item/prd/{pid}" if pid is not None else "/asos-design/item/grp/abc"
    return (
        f'<article data-auto-id="productTile"><a href="{href}" aria-label="{title}">'
        f'<img src="//images.asos-media.com/products/item/{pid}-1?$n_320w$" />'
        f'<p data-auto-id="productTileDescription">{title}</p>'
        f'<span data-testid="current-price">{price}</span>{extra}</a></article>'
    )


def dom_page(tiles: List[str]) -> str:
    return "<html><body><section>" + "".join(tiles) + "</section></body></html>"


@pytest.fixture
def api_client():
    """API client double whose calls all fail (empty results)."""
    client = Mock(spec=ApiFallbackClient)
    client.fetch_listing.return_value = ApiListing(error="request failed")
    client.fetch_stock_price.return_value = []
    return client


@pytest.fixture
def pipeline(api_client):
    return ExtractionPipeline(api_client=api_client)
