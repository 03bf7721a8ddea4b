"""Last-resort product extraction from listing and detail markup.

Used when no JSON payload exists or none of them yield products. The
heuristics are tuned to ASOS product tiles and trade precision for
availability: brand and colour in particular are best-effort guesses.
"""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from asos_harvester.config import settings

logger = logging.getLogger(__name__)

TILE_SELECTOR = ", ".join((
    "article",
    '[data-testid*="productTile"]',
    '[data-auto-id*="productTile"]',
    '[class*="productTile"]',
))

# A tile must link to a product or product group
PRODUCT_LINK = re.compile(r"/(?:prd|grp)/", re.IGNORECASE)

ID_PATTERNS = (
    re.compile(r"/prd/(\d+)"),
    re.compile(r"/grp/(\d+)"),
    re.compile(r"[?&#](?:pid|productId)=(\d+)", re.IGNORECASE),
)

PRICE_SELECTORS = (
    '[data-testid="current-price"]',
    '[data-auto-id="productTileSaleAmount"]',
    '[class*="reducedPrice"]',
    '[class*="salePrice"]',
    '[data-auto-id="productTilePrice"]',
    '[data-testid="price"]',
    '[class*="price"]',
    '[class*="Price"]',
)

PREVIOUS_PRICE_SELECTORS = (
    '[data-testid="previous-price"]',
    '[data-testid="rrp-price"]',
    '[class*="previousPrice"]',
    '[class*="originalPrice"]',
    "del",
    "s",
)

TITLE_SELECTORS = (
    '[data-testid="productDescription"]',
    '[data-auto-id="productTileDescription"]',
    '[class*="productDescription"]',
    "h2",
    "h3",
    "p",
)

BADGE_SELECTORS = (
    '[data-testid*="badge"]',
    '[data-auto-id*="badge"]',
    '[class*="badge"]',
    '[class*="Badge"]',
    '[class*="overlay"]',
    '[class*="sellingFast"]',
)

CURRENCY_SYMBOLS = {"£": "GBP", "$": "USD", "€": "EUR"}

# Thousands separators between digit groups ("1,299.00" -> "1299.00")
_THOUSANDS = re.compile(r"(?<=\d)[,\s](?=\d{3}\b)")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_CURRENCY_AMOUNT = re.compile(r"[£$€]\s*\d[\d,]*(?:\.\d+)?")

# "..., Price £20.00", "- £20.00", "Now $15 Was $30"
_TRAILING_PRICE = re.compile(
    r"[\s,;:|\-–]*(?:(?:current|original|sale|now|was)?\s*price\s*[:\-]?\s*|now\s*|was\s*)?"
    r"[£$€]\s*\d[\d.,]*.*$",
    re.IGNORECASE | re.DOTALL,
)

# Words that end a colour phrase: materials, fits and promotional terms
COLOR_STOP_WORDS = {
    "cotton", "linen", "denim", "leather", "faux", "suede", "satin", "silk",
    "jersey", "wool", "knit", "mesh", "nylon", "polyester", "fleece", "velvet",
    "corduroy", "chiffon", "twill", "canvas", "organic", "recycled",
    "exclusive", "only", "online", "sale", "new", "part", "co-ord", "multipack",
    "pack", "with", "for", "by", "from", "at", "in", "-",
}
_COLOR_PHRASE = re.compile(r"\bin\s+(?=([A-Za-z][A-Za-z /\-]*))", re.IGNORECASE)
MAX_COLOR_WORDS = 3


def parse_price(price_text: Optional[str]) -> Optional[float]:
    """
    Parse the first decimal-looking number from price text.

    Thousands separators are stripped first, so "£1,299.99" parses as 1299.99.
    """
    if not price_text:
        return None
    cleaned = _THOUSANDS.sub("", str(price_text))
    match = _NUMBER.search(cleaned)
    if not match:
        return None
    try:
        return float(match.group())
    except ValueError:
        return None


def currency_from_text(text: Optional[str]) -> Optional[str]:
    """Infer an ISO currency code from the first currency symbol in text."""
    if not text:
        return None
    for ch in text:
        if ch in CURRENCY_SYMBOLS:
            return CURRENCY_SYMBOLS[ch]
    return None


def extract_id_from_url(url: str) -> Optional[str]:
    """Extract a product or group id from a product URL."""
    for pattern in ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def strip_price_suffix(title: str) -> str:
    """Remove a price that leaked into the end of a title."""
    return _TRAILING_PRICE.sub("", title).strip(" ,;:-|")


def guess_color(text: Optional[str]) -> Optional[str]:
    """
    Best-effort colour from an "... in <colour>" phrase.

    The phrase stops at punctuation, a stop word or after three words. The
    last "in" phrase wins ("shirt in stretch in navy" -> "navy").
    """
    if not text:
        return None
    color = None
    for match in _COLOR_PHRASE.finditer(text):
        words = []
        for word in match.group(1).split():
            if word.lower() in COLOR_STOP_WORDS or len(words) >= MAX_COLOR_WORDS:
                break
            words.append(word)
        if words:
            color = " ".join(words).strip(" -/")
    return color or None


def guess_brand(title: Optional[str]) -> Optional[str]:
    """
    Best-effort brand from title capitalization.

    A leading run of all-caps words ("ASOS DESIGN ...") is taken as the brand;
    otherwise a capitalized first word ("Nike Air Max ..."). Often wrong.
    """
    if not title:
        return None
    words = title.split()
    caps = []
    for word in words:
        letters = [c for c in word if c.isalpha()]
        if len(letters) >= 2 and all(c.isupper() for c in letters):
            caps.append(word)
        else:
            break
    if caps and len(caps) < len(words):
        return " ".join(caps)
    if words and words[0][:1].isupper() and words[0][1:].islower():
        return words[0]
    return None


def _text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return " ".join(node.text(separator=" ").split())


def _first_text(tile: Node, selectors) -> str:
    for selector in selectors:
        for node in tile.css(selector):
            text = _text(node)
            if text:
                return text
    return ""


def _image_url(tile: Node) -> Optional[str]:
    img = tile.css_first("img")
    if img is None:
        return None
    attrs = img.attributes
    for attr in ("src", "data-src"):
        value = attrs.get(attr)
        if value and not value.startswith("data:"):
            return value
    srcset = attrs.get("srcset") or attrs.get("data-srcset")
    if srcset:
        return srcset.split(",")[0].strip().split(" ")[0] or None
    return None


def _badges(tile: Node) -> List[str]:
    badges: List[str] = []
    for selector in BADGE_SELECTORS:
        for node in tile.css(selector):
            text = _text(node)
            if text and len(text) <= 40 and text not in badges:
                badges.append(text)
    return badges


def _page_key(page_url: Optional[str]) -> str:
    return hashlib.md5((page_url or "").encode()).hexdigest()[:8]


class DomHeuristicExtractor:
    """Extract raw products from product tiles in listing markup."""

    base_url: str = settings.site_base_url

    def extract_from_markup(self, html: str, page_url: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Extract products from listing markup.

        Args:
            html: Raw HTML content
            page_url: URL of the page (scopes placeholder ids to the page)

        Returns:
            List of raw product dicts in page order
        """
        products: List[Dict[str, Any]] = []
        if not html:
            return products

        try:
            parser = HTMLParser(html)
            tiles = parser.css(TILE_SELECTOR)
        except Exception as e:
            logger.debug(f"Failed to parse listing markup: {e}")
            return products

        if not tiles:
            logger.debug("No product tiles found on page")
            return products

        seen_urls = set()
        page_key = _page_key(page_url)
        for position, tile in enumerate(tiles):
            try:
                product = self._parse_tile(tile, position, page_key)
            except Exception as e:
                logger.debug(f"Failed to parse product tile {position}: {e}")
                continue
            if product is None or product["url"] in seen_urls:
                continue
            seen_urls.add(product["url"])
            products.append(product)

        logger.debug(f"DOM heuristics found {len(products)} products in {len(tiles)} tiles")
        return products

    def _parse_tile(self, tile: Node, position: int, page_key: str) -> Optional[Dict[str, Any]]:
        link = None
        for anchor in tile.css("a[href]"):
            if PRODUCT_LINK.search(anchor.attributes.get("href") or ""):
                link = anchor
                break
        if link is None:
            return None

        href = link.attributes.get("href") or ""
        url = urljoin(self.base_url, href)
        product_id = extract_id_from_url(href) or f"tile-{page_key}-{position}"

        title = ""
        for candidate in (_first_text(tile, TITLE_SELECTORS), link.attributes.get("aria-label") or ""):
            title = strip_price_suffix(candidate.strip())
            if title:
                break

        price_text = _first_text(tile, PRICE_SELECTORS)
        price_value = parse_price(price_text)
        if price_value is None:
            # Fall back to the whole tile, preferring a currency-marked amount
            tile_text = _text(tile)
            amount = _CURRENCY_AMOUNT.search(tile_text)
            price_text = amount.group() if amount else None
            price_value = parse_price(price_text or tile_text)

        previous_text = _first_text(tile, PREVIOUS_PRICE_SELECTORS)
        previous_value = parse_price(previous_text)

        label = " ".join(filter(None, (title, link.attributes.get("aria-label"))))

        return {
            "id": product_id,
            "url": url,
            "title": title or None,
            "brand": guess_brand(title),
            "price_text": price_text or None,
            "price_value": price_value,
            "previous_price_text": previous_text or None,
            "previous_price_value": previous_value,
            "currency": currency_from_text(price_text),
            "image": _image_url(tile),
            "color": guess_color(label),
            "badges": _badges(tile),
        }

    def extract_detail_from_markup(self, html: str, page_url: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Extract the single product of a detail page from meta tags.

        Returns a one-element list, or an empty list if the page has no
        recognizable product URL or title.
        """
        if not html:
            return []
        try:
            parser = HTMLParser(html)
        except Exception as e:
            logger.debug(f"Failed to parse detail markup: {e}")
            return []

        def meta(*names: str) -> Optional[str]:
            for name in names:
                node = parser.css_first(f'meta[property="{name}"], meta[name="{name}"]')
                if node is not None:
                    content = (node.attributes.get("content") or "").strip()
                    if content:
                        return content
            return None

        canonical = parser.css_first('link[rel="canonical"]')
        url = meta("og:url") or (canonical.attributes.get("href") if canonical is not None else None) or page_url
        if not url or not PRODUCT_LINK.search(url):
            return []

        title = meta("og:title") or _text(parser.css_first("h1"))
        if not title:
            return []
        title = strip_price_suffix(title)

        price_text = meta("product:price:amount", "og:price:amount")
        if price_text is None:
            price_node = parser.css_first(", ".join(PRICE_SELECTORS))
            price_text = _text(price_node) or None

        return [{
            "id": extract_id_from_url(url),
            "url": urljoin(self.base_url, url),
            "title": title,
            "brand": meta("product:brand", "og:brand") or guess_brand(title),
            "description": meta("og:description", "description"),
            "price_text": price_text,
            "price_value": parse_price(price_text),
            "currency": meta("product:price:currency", "og:price:currency") or currency_from_text(price_text),
            "image": meta("og:image"),
            "color": meta("product:color") or guess_color(title),
            "availability": meta("product:availability", "og:availability"),
        }]


dom_extractor = DomHeuristicExtractor()
