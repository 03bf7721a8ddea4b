"""Tests for DOM heuristic extraction."""

from conftest import dom_page, tile

from asos_harvester.ingest.dom_extractor import (
    DomHeuristicExtractor,
    currency_from_text,
    extract_id_from_url,
    guess_brand,
    guess_color,
    parse_price,
    strip_price_suffix,
)


def test_parse_price():
    assert parse_price("£1,299.99") == 1299.99
    assert parse_price("Now $15.00 Was $30.00") == 15.0
    assert parse_price("€ 45") == 45.0
    assert parse_price("free") is None
    assert parse_price(None) is None


def test_currency_from_text():
    assert currency_from_text("£20.00") == "GBP"
    assert currency_from_text("$5") == "USD"
    assert currency_from_text("20.00") is None


def test_extract_id_from_url():
    assert extract_id_from_url("/asos-design/shirt/prd/204123?clr=navy") == "204123"
    assert extract_id_from_url("https://www.asos.com/nike/grp/5512") == "5512"
    assert extract_id_from_url("/search/?pid=778") == "778"
    assert extract_id_from_url("/men/cat/?cid=1") is None


def test_strip_price_suffix():
    assert strip_price_suffix("Nike Club hoodie in grey, Price £45.00") == "Nike Club hoodie in grey"
    assert strip_price_suffix("Jeans - Now £20 Was £40") == "Jeans"
    assert strip_price_suffix("Plain title") == "Plain title"


def test_guess_color():
    assert guess_color("ASOS DESIGN oversized shirt in navy") == "navy"
    assert guess_color("Shirt in stretch in dark green") == "dark green"
    assert guess_color("Jeans in cotton twill") is None
    assert guess_color("Trainers") is None


def test_guess_brand():
    assert guess_brand("ASOS DESIGN oversized shirt") == "ASOS DESIGN"
    assert guess_brand("Nike Air Max 90") == "Nike"
    assert guess_brand("oversized shirt") is None


class TestExtractFromMarkup:
    """Listing tiles."""

    def setup_method(self):
        self.extractor = DomHeuristicExtractor()

    def test_basic_tiles(self):
        html = dom_page([
            tile(101, "ASOS DESIGN oversized shirt in navy", "£20.00"),
            tile(102, "Nike Club hoodie in grey", "£1,045.00"),
        ])
        products = self.extractor.extract_from_markup(html, "https://www.asos.com/search/?q=shirt")

        assert [p["id"] for p in products] == ["101", "102"]
        first = products[0]
        assert first["url"] == "https://www.asos.com/asos-design/item/prd/101"
        assert first["title"] == "ASOS DESIGN oversized shirt in navy"
        assert first["price_value"] == 20.0
        assert first["currency"] == "GBP"
        assert first["color"] == "navy"
        assert first["brand"] == "ASOS DESIGN"
        assert first["image"].startswith("//images.asos-media.com/")
        assert products[1]["price_value"] == 1045.0

    def test_tile_without_product_link_skipped(self):
        html = dom_page([
            '<article><a href="/men/sale/cat/?cid=8409">Sale</a><span>£5.00</span></article>',
            tile(103, "Shirt", "£10.00"),
        ])
        products = self.extractor.extract_from_markup(html)
        assert [p["id"] for p in products] == ["103"]

    def test_placeholder_id_when_url_has_no_id(self):
        products = self.extractor.extract_from_markup(dom_page([tile(None, "Mystery item", "£9.00")]))
        assert len(products) == 1
        assert products[0]["id"].startswith("tile-")

    def test_price_falls_back_to_tile_text(self):
        html = dom_page(['<article><a href="/x/prd/5">Thing</a><div>Now £12.50</div></article>'])
        products = self.extractor.extract_from_markup(html)
        assert products[0]["price_value"] == 12.5
        assert products[0]["price_text"] == "£12.50"

    def test_leaked_price_removed_from_aria_label_title(self):
        html = dom_page([
            '<article><a href="/x/prd/6" aria-label="Nike Club hoodie in grey, Price £45.00">'
            '<span data-testid="current-price">£45.00</span></a></article>'
        ])
        products = self.extractor.extract_from_markup(html)
        assert products[0]["title"] == "Nike Club hoodie in grey"

    def test_badges_deduplicated(self):
        badge = '<div data-testid="badge">Selling fast</div><div class="badge">Selling fast</div>'
        products = self.extractor.extract_from_markup(dom_page([tile(104, "Shirt", "£10.00", badge)]))
        assert products[0]["badges"] == ["Selling fast"]

    def test_duplicate_urls_collapsed(self):
        html = dom_page([tile(105, "Shirt", "£10.00"), tile(105, "Shirt", "£10.00")])
        assert len(self.extractor.extract_from_markup(html)) == 1

    def test_no_tiles(self):
        assert self.extractor.extract_from_markup("<html><body><p>empty</p></body></html>") == []
        assert self.extractor.extract_from_markup("") == []


def test_extract_detail_from_meta_tags():
    html = (
        "<html><head>"
        '<meta property="og:url" content="https://www.asos.com/asos-design/shirt/prd/204">'
        '<meta property="og:title" content="ASOS DESIGN shirt in white">'
        '<meta property="product:price:amount" content="30.00">'
        '<meta property="product:price:currency" content="GBP">'
        '<meta property="og:image" content="https://images.asos-media.com/products/x/204-1">'
        "</head><body><h1>ASOS DESIGN shirt in white</h1></body></html>"
    )
    products = DomHeuristicExtractor().extract_detail_from_markup(html)

    assert len(products) == 1
    product = products[0]
    assert product["id"] == "204"
    assert product["price_value"] == 30.0
    assert product["currency"] == "GBP"
    assert product["color"] == "white"


def test_extract_detail_requires_product_url():
    html = '<html><head><meta property="og:title" content="Men"></head></html>'
    assert DomHeuristicExtractor().extract_detail_from_markup(html, "https://www.asos.com/men/") == []
