"""Tests for product normalization."""

from conftest import make_product

from asos_harvester.ingest.pipeline import ExtractionMethod
from asos_harvester.normalize.processor import (
    CanonicalProduct,
    ProductNormalizer,
    normalize_image_url,
    normalize_product_url,
)


class TestProductNormalizer:

    def setup_method(self):
        self.normalizer = ProductNormalizer()

    def test_listing_payload_record(self):
        raw = make_product(101, name="ASOS DESIGN shirt", price=20.0, previous=35.0)
        product = self.normalizer.normalize(raw, ExtractionMethod.PRIMARY_PAYLOAD, "https://www.asos.com/search/?q=shirt")

        assert isinstance(product, CanonicalProduct)
        assert product.id == "101"
        assert product.title == "ASOS DESIGN shirt"
        assert product.brand == "ASOS DESIGN"
        assert product.price_value == 20.0
        assert product.price_text == "£20.00"
        assert product.original_price_value == 35.0
        assert product.is_marked_down is True
        assert product.currency == "GBP"
        assert product.color == "Black"
        assert product.url == "https://www.asos.com/men/asos-design/product-101/prd/101"
        assert product.image_url == "https://images.asos-media.com/products/product-101/101-1-black"
        assert product.source_url == "https://www.asos.com/search/?q=shirt"

    def test_numeric_value_beats_display_text(self):
        raw = {"id": 1, "price": {"current": {"value": 12.5, "text": "£99.00"}}}
        assert self.normalizer.normalize(raw).price_value == 12.5

    def test_price_parsed_from_text_when_no_value(self):
        raw = {"id": 1, "price": {"current": {"text": "£1,299.00"}}}
        product = self.normalizer.normalize(raw)
        assert product.price_value == 1299.0
        assert product.currency == "GBP"

    def test_markdown_from_previous_price_alone(self):
        raw = {"id": 1, "price": {"current": {"value": 10}, "rrp": {"value": 15}}}
        assert self.normalizer.normalize(raw).is_marked_down is True

    def test_not_marked_down_without_previous_price(self):
        raw = {"id": 1, "price": {"current": {"value": 10}}}
        product = self.normalizer.normalize(raw)
        assert product.is_marked_down is False
        assert product.original_price_value is None

    def test_stock_flags(self):
        assert self.normalizer.normalize({"id": 1}).is_in_stock is True
        assert self.normalizer.normalize({"id": 1, "isInStock": False}).is_in_stock is False
        assert self.normalizer.normalize({"id": 1, "isNoSize": True, "isInStock": True}).is_in_stock is False
        json_ld = {"sku": "1", "offers": [{"availability": "https://schema.org/OutOfStock"}]}
        assert self.normalizer.normalize(json_ld).is_in_stock is False

    def test_dom_record(self):
        raw = {
            "id": "201",
            "url": "https://www.asos.com/x/prd/201",
            "title": "Shirt in blue",
            "price_text": "$12.00",
            "price_value": 12.0,
            "previous_price_value": 20.0,
            "currency": "USD",
            "image": "//images.asos-media.com/products/x/201-1?$n_320w$",
            "color": "blue",
            "badges": ["Selling fast", "Selling fast", "Sale"],
        }
        product = self.normalizer.normalize(raw, ExtractionMethod.DOM_HEURISTIC)

        assert product.price_value == 12.0
        assert product.original_price_value == 20.0
        assert product.is_marked_down is True
        assert product.image_url == "https://images.asos-media.com/products/x/201-1"
        assert product.badge == "Selling fast, Sale"

    def test_json_ld_record(self):
        raw = {
            "@type": "Product",
            "sku": "303",
            "name": "Jeans",
            "brand": {"@type": "Brand", "name": "Levi's"},
            "image": ["https://images.asos-media.com/products/jeans/303-1"],
            "offers": [{"price": "40.00", "priceCurrency": "EUR"}],
        }
        product = self.normalizer.normalize(raw)

        assert product.id == "303"
        assert product.brand == "Levi's"
        assert product.price_value == 40.0
        assert product.currency == "EUR"
        assert product.url == "https://www.asos.com/prd/303"

    def test_malformed_values_do_not_raise(self):
        raw = {"id": 5, "price": {"current": {"value": "n/a"}}, "imageUrl": 42, "colour": ["x"]}
        product = self.normalizer.normalize(raw)
        assert product.id == "5"
        assert product.price_value is None
        assert product.image_url is None
        assert product.color is None

    def test_missing_id_is_empty(self):
        assert self.normalizer.normalize({"name": "No id"}).id == ""
        assert self.normalizer.normalize("not a mapping").id == ""

    def test_currency_unknown(self):
        assert self.normalizer.normalize({"id": 1, "price": 10}).currency is None

    def test_record_round_trip_fields(self):
        record = self.normalizer.normalize({"id": 1}).to_record()
        assert set(record) >= {"id", "url", "title", "price_value", "is_in_stock", "badge"}


def test_normalize_image_url():
    assert normalize_image_url("//images.asos-media.com/a.jpg?x=1") == "https://images.asos-media.com/a.jpg"
    assert normalize_image_url("images.asos-media.com/x/1") == "https://images.asos-media.com/x/1"
    assert normalize_image_url("asos-design/x/1") == "https://images.asos-media.com/products/asos-design/x/1"
    assert normalize_image_url("abc-1.jpg") == "https://images.asos-media.com/products/abc-1.jpg"
    assert normalize_image_url("/shirt.v2.jpg?$n$") == "https://images.asos-media.com/products/shirt.v2.jpg"
    assert normalize_image_url("https://cdn.example/a.jpg") == "https://cdn.example/a.jpg"
    assert normalize_image_url("") is None
    assert normalize_image_url(None) is None


def test_normalize_product_url():
    assert normalize_product_url("https://www.asos.com/x/prd/1", "1") == "https://www.asos.com/x/prd/1"
    assert normalize_product_url("/x/prd/1", "1") == "https://www.asos.com/x/prd/1"
    assert normalize_product_url(None, "7") == "https://www.asos.com/prd/7"
    assert normalize_product_url(None, "") is None
