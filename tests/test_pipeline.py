"""Tests for the extraction waterfall."""

from unittest.mock import Mock

from conftest import dom_page, make_product, next_data_page, tile, window_asos_page

from asos_harvester.ingest.api_client import ApiListing, ApiOptions
from asos_harvester.ingest.pagination import PaginationInfo
from asos_harvester.ingest.pipeline import ApiContext, ExtractionMethod, ExtractionPipeline

CONTEXT = ApiContext(keyword="shirt", page_index=0, options=ApiOptions())


def test_strategy_order():
    pipeline = ExtractionPipeline(api_client=Mock())
    assert [method for method, _ in pipeline.strategies] == [
        ExtractionMethod.PRIMARY_PAYLOAD,
        ExtractionMethod.API,
        ExtractionMethod.SECONDARY_PAYLOAD,
        ExtractionMethod.DOM_HEURISTIC,
    ]


def test_primary_payload_wins_without_calling_api(pipeline, api_client):
    html = window_asos_page([make_product(1), make_product(2)], {"page": 1, "totalPages": 4})

    result = pipeline.run(html, CONTEXT, "https://www.asos.com/search/?q=shirt")

    assert result.method == ExtractionMethod.PRIMARY_PAYLOAD
    assert [p["id"] for p in result.products] == [1, 2]
    assert result.pagination.total_pages == 4
    api_client.fetch_listing.assert_not_called()


def test_api_used_when_page_has_no_payload(pipeline, api_client):
    api_client.fetch_listing.return_value = ApiListing(
        products=[{"id": 10}],
        pagination=PaginationInfo(page=1, page_size=72, total_pages=2, total_results=80),
    )

    result = pipeline.run("<html><body></body></html>", CONTEXT)

    assert result.method == ExtractionMethod.API
    assert result.products == [{"id": 10}]
    assert result.pagination.total_pages == 2
    api_client.fetch_listing.assert_called_once_with("shirt", 0, CONTEXT.options)


def test_secondary_payload_after_api_failure(pipeline, api_client):
    result = pipeline.run(next_data_page([make_product(3)]), CONTEXT)

    assert result.method == ExtractionMethod.SECONDARY_PAYLOAD
    assert result.products[0]["id"] == 3
    api_client.fetch_listing.assert_called_once()


def test_dom_heuristics_when_api_fails(pipeline):
    result = pipeline.run(dom_page([tile(201, "Shirt in blue", "£12.00")]), CONTEXT)

    assert result.method == ExtractionMethod.DOM_HEURISTIC
    assert result.products[0]["id"] == "201"


def test_api_skipped_without_context(pipeline, api_client):
    result = pipeline.run(dom_page([tile(202, "Shirt", "£12.00")]), None)

    assert result.method == ExtractionMethod.DOM_HEURISTIC
    api_client.fetch_listing.assert_not_called()


def test_raising_strategy_is_a_miss(pipeline, api_client):
    api_client.fetch_listing.side_effect = RuntimeError("boom")

    result = pipeline.run(dom_page([tile(203, "Shirt", "£12.00")]), CONTEXT)

    assert result.method == ExtractionMethod.DOM_HEURISTIC


def test_empty_primary_payload_falls_through(pipeline):
    html = window_asos_page([]) + dom_page([tile(204, "Shirt", "£12.00")])
    result = pipeline.run(html, None)
    assert result.method == ExtractionMethod.DOM_HEURISTIC


def test_all_strategies_miss(pipeline):
    assert pipeline.run("<html><body>Access denied</body></html>", CONTEXT) is None


class TestRunDetail:

    def test_primary_payload_product(self, pipeline):
        html = '<script>window.asos = {"pdp": {"product": {"id": 301, "name": "Shirt"}}};</script>'
        result = pipeline.run_detail(html, "https://www.asos.com/x/prd/301")
        assert result.method == ExtractionMethod.PRIMARY_PAYLOAD
        assert result.products == [{"id": 301, "name": "Shirt"}]

    def test_stock_price_api(self, pipeline, api_client):
        api_client.fetch_stock_price.return_value = [
            {
                "productId": 302,
                "productCode": "1234567",
                "productPrice": {"current": {"value": 19.0, "text": "£19.00"}},
                "variants": [{"isInStock": False}, {"isInStock": True}],
            }
        ]

        result = pipeline.run_detail("<html></html>", "https://www.asos.com/x/prd/302")

        assert result.method == ExtractionMethod.API
        product = result.products[0]
        assert product["id"] == "302"
        assert product["productCode"] == "1234567"
        assert product["isInStock"] is True
        api_client.fetch_stock_price.assert_called_once_with("302")

    def test_json_ld_product(self, pipeline):
        html = (
            '<script type="application/ld+json">'
            '{"@type": "Product", "sku": "303", "name": "Jeans", "offers": {"price": "40.00"}}'
            "</script>"
        )
        result = pipeline.run_detail(html, "https://www.asos.com/x/prd/303")
        assert result.method == ExtractionMethod.SECONDARY_PAYLOAD
        assert result.products[0]["sku"] == "303"

    def test_meta_tags(self, pipeline):
        html = (
            '<meta property="og:url" content="https://www.asos.com/x/prd/304">'
            '<meta property="og:title" content="Coat in camel">'
        )
        result = pipeline.run_detail(html, "https://www.asos.com/x/prd/304")
        assert result.method == ExtractionMethod.DOM_HEURISTIC
        assert result.products[0]["id"] == "304"
