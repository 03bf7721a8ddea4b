"""Extract embedded JSON payloads from ASOS pages.

Only structured data is recovered here: JSON script blocks and object literals
assigned to known globals. Literals are cut out with a balanced-brace scan and
must then parse as JSON (optionally after unescaping HTML entities once).
Nothing found in the page is ever evaluated as code, so a literal using real
JavaScript syntax (unquoted keys, trailing commas, template strings) is a miss.
"""

import html
import json
import logging
import re
from typing import Any, Dict, List, Optional

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)

# Script blocks that carry the listing catalog as plain JSON
CATALOG_SCRIPT_SELECTORS = (
    'script#asos-plp-data',
    'script[data-id="window.asos"]',
    'script[data-asos-payload]',
    'script[type="application/json"][id*="plp"]',
)

# window.asos = {...};  (not window.asos.plp = ..., not window.asos == ...)
PRIMARY_ASSIGNMENT = re.compile(r"window\.asos\s*=(?!=)\s*")

SECONDARY_ASSIGNMENTS = (
    re.compile(r"window\.__INITIAL_STATE__\s*=(?!=)\s*"),
    re.compile(r"window\.__PRELOADED_STATE__\s*=(?!=)\s*"),
)

_OPENERS = {"{": "}", "[": "]"}


def parse_json_block(text: Optional[str]) -> Optional[Any]:
    """
    Parse a JSON block, retrying once with HTML entities unescaped.

    Returns the decoded value, or None if neither form is valid JSON.
    """
    if not text:
        return None
    candidate = text.strip()
    if not candidate:
        return None
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.debug(f"Raw JSON parse failed: {e}")

    unescaped = html.unescape(candidate)
    if unescaped == candidate:
        return None
    try:
        return json.loads(unescaped)
    except json.JSONDecodeError as e:
        logger.debug(f"Unescaped JSON parse failed: {e}")
    return None


def extract_balanced_literal(text: str, start: int) -> Optional[str]:
    """
    Return the object/array literal that opens at ``text[start]``.

    Brackets inside single- or double-quoted strings are ignored. Returns None
    if ``start`` is not an opening bracket or the literal never closes.
    """
    if start < 0 or start >= len(text) or text[start] not in _OPENERS:
        return None

    stack = []
    quote = None
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in ("}", "]"):
            if not stack or ch != stack.pop():
                return None
            if not stack:
                return text[start:i + 1]
    return None


def _iter_scripts(tree: HTMLParser, selector: str = "script"):
    for script in tree.css(selector):
        text = script.text(deep=True, separator="", strip=False)
        if text:
            yield text


def _parse_assignment(text: str, pattern: re.Pattern) -> tuple[bool, Optional[Dict[str, Any]]]:
    """
    Look for ``pattern`` followed by an object literal in a script body.

    Assignments whose right-hand side is not a literal (``window.asos =
    window.asos || {}``) are skipped. Returns (found, payload); ``found`` is
    True once a literal was seen, even if it could not be parsed.
    """
    for match in pattern.finditer(text):
        start = match.end()
        if start >= len(text) or text[start] not in _OPENERS:
            continue

        literal = extract_balanced_literal(text, start)
        if literal is None:
            logger.debug(f"Assignment {pattern.pattern!r} has no balanced object literal")
            return True, None

        data = parse_json_block(literal)
        if not isinstance(data, dict):
            logger.debug(f"Assignment {pattern.pattern!r} is not a JSON object literal")
            return True, None
        return True, data
    return False, None


def extract_catalog_script(html_text: str) -> Optional[Dict[str, Any]]:
    """Extract the catalog from dedicated JSON script blocks."""
    try:
        tree = HTMLParser(html_text)
    except Exception as e:
        logger.debug(f"Failed to parse markup: {e}")
        return None

    for selector in CATALOG_SCRIPT_SELECTORS:
        for text in _iter_scripts(tree, selector):
            data = parse_json_block(text)
            if isinstance(data, dict):
                return data
            logger.debug(f"Catalog script {selector} is not valid JSON, continuing")
    return None


def extract_catalog_assignment(html_text: str) -> Optional[Dict[str, Any]]:
    """Extract the object literal assigned to ``window.asos``."""
    try:
        tree = HTMLParser(html_text)
    except Exception as e:
        logger.debug(f"Failed to parse markup: {e}")
        return None

    for text in _iter_scripts(tree):
        if "window.asos" not in text:
            continue
        found, data = _parse_assignment(text, PRIMARY_ASSIGNMENT)
        if found:
            if data is None:
                logger.debug("window.asos is not expressible as JSON; treating as a miss")
            return data
    return None


def extract_primary_payload(html_text: str) -> Optional[Dict[str, Any]]:
    """
    Extract the primary catalog payload.

    Tries dedicated JSON script blocks first, then the ``window.asos``
    assignment. Never raises.
    """
    if not html_text:
        return None
    data = extract_catalog_script(html_text)
    if data is not None:
        return data
    return extract_catalog_assignment(html_text)


def extract_next_data(html_text: str) -> Optional[Dict[str, Any]]:
    """Extract ``__NEXT_DATA__`` script tag content."""
    try:
        tree = HTMLParser(html_text)
        for text in _iter_scripts(tree, "script#__NEXT_DATA__"):
            data = parse_json_block(text)
            if isinstance(data, dict):
                return data
    except Exception as e:
        logger.debug(f"Failed to extract __NEXT_DATA__: {e}")
    return None


def extract_initial_state(html_text: str) -> Optional[Dict[str, Any]]:
    """Extract ``__INITIAL_STATE__`` or ``__PRELOADED_STATE__`` assignments."""
    try:
        tree = HTMLParser(html_text)
        for text in _iter_scripts(tree):
            if "__INITIAL_STATE__" not in text and "__PRELOADED_STATE__" not in text:
                continue
            for pattern in SECONDARY_ASSIGNMENTS:
                found, data = _parse_assignment(text, pattern)
                if found and data is not None:
                    return data
    except Exception as e:
        logger.debug(f"Failed to extract __INITIAL_STATE__: {e}")
    return None


def extract_secondary_payload(html_text: str) -> Optional[Dict[str, Any]]:
    """
    Extract the hydration payload used when ``window.asos`` is absent.

    ``__NEXT_DATA__`` wins over state assignments. Never raises.
    """
    if not html_text:
        return None
    data = extract_next_data(html_text)
    if data is not None:
        return data
    return extract_initial_state(html_text)


def extract_json_ld(html_text: str) -> List[Dict[str, Any]]:
    """
    Extract JSON-LD structured data from script tags.

    Returns list of JSON-LD objects found in the page; ``@graph`` containers
    and top-level arrays are flattened.
    """
    results: List[Dict[str, Any]] = []
    if not html_text:
        return results
    try:
        tree = HTMLParser(html_text)
        for text in _iter_scripts(tree, 'script[type="application/ld+json"]'):
            data = parse_json_block(text)
            items = data if isinstance(data, list) else [data]
            for item in items:
                if not isinstance(item, dict):
                    continue
                graph = item.get("@graph")
                if isinstance(graph, list):
                    results.extend(obj for obj in graph if isinstance(obj, dict))
                else:
                    results.append(item)
    except Exception as e:
        logger.debug(f"Failed to extract JSON-LD: {e}")
    return results
