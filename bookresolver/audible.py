"""Audiobook length lookup from Audible's public search page."""
import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import quote_plus

import httpx

from bookresolver.async_client import AsyncSourceClient, USER_AGENT
from bookresolver.documents import ParsedDocument
from bookresolver.merge import SelectorRule, fill_fields, selector_extractor
from bookresolver.models import AudibleRecord
from bookresolver.parse import parse_duration, sanitize_search_query
from bookresolver.request_log import RequestLog

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.audible.com/search?keywords={query}"

_ASIN = re.compile(r"/pd/[^/]+/([A-Z0-9]{10})")

# Audible changes markup often; candidates are tried in order.
PRODUCT_SELECTORS = [
    "li.productListItem",
    ".product-list-flyout-container li",
    '[data-testid="product-list-item"]',
    ".bc-list-item",
]


def _cover(src: str) -> Optional[str]:
    return None if "no-image" in src else src


def _asin(href: str) -> Optional[str]:
    match = _ASIN.search(href)
    return match.group(1) if match else None


AUDIBLE_RULES = [
    SelectorRule("asin", ['a[href*="/pd/"]'], attr="href", transform=_asin),
    SelectorRule("title", ["h3.bc-heading a", ".bc-heading a", 'a.bc-link[href*="/pd/"]', ".productListItem h3"]),
    SelectorRule("author", [
        ".authorLabel a",
        '.bc-list-item:-soup-contains("By:") a',
        '.bc-list-item:-soup-contains("Written by:") a',
        "li.authorLabel a",
    ]),
    SelectorRule("narrator", [
        ".narratorLabel a",
        '.bc-list-item:-soup-contains("Narrated by:") a',
        "li.narratorLabel a",
    ]),
    SelectorRule("cover_url", ["img.bc-pub-block", ".bc-image-inset-border img", 'img[src*="images-amazon"]'],
                 attr="src", transform=_cover),
]

RUNTIME_SELECTORS = [
    ".runtimeLabel",
    '.bc-list-item:-soup-contains("Length:")',
    "li.runtimeLabel",
    '[class*="runtime"]',
]


def extract_runtime(product: ParsedDocument, record: AudibleRecord) -> Dict[str, Any]:
    """First runtime label that parses to a non-zero duration."""
    for selector in RUNTIME_SELECTORS:
        duration = parse_duration(product.find_first([selector]))
        if duration:
            return {"duration_ms": duration}
    return {}


AUDIBLE_EXTRACTORS = [selector_extractor(AUDIBLE_RULES, method="audible_search"), extract_runtime]


def parse_search_page(html: str, log: Optional[RequestLog] = None) -> Optional[AudibleRecord]:
    """
    Extract the first product of a search results page.

    Args:
        html: Search page HTML
        log: Request log

    Returns:
        AudibleRecord, or None when no product with a duration was found
    """
    note = log.log if log else logger.info
    document = ParsedDocument.from_html(html)

    scoped = document.first_scope(PRODUCT_SELECTORS)
    if scoped is None:
        note("No products found on Audible search results")
        note(f"Page title: {document.title()}")
        return None

    product, selector = scoped
    note(f"Found product using selector: {selector}")

    record = fill_fields(AudibleRecord(), AUDIBLE_EXTRACTORS, product, log, default_method=None)
    note(f"Extracted title: {record.title}, author: {record.author}, duration_ms: {record.duration_ms}")

    # Duration is the value callers need; without it the hit is useless
    if not record.duration_ms:
        note("Could not extract duration from Audible result")
        return None
    return record


class AudibleClient(AsyncSourceClient):
    """Scrapes Audible search results."""

    name = "Audible"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 15):
        super().__init__(client=client, timeout=timeout)

    async def lookup(self, title: str, author: Optional[str] = None, log: Optional[RequestLog] = None) -> Optional[AudibleRecord]:
        """Search by title and author and return the top hit, if usable."""
        query = sanitize_search_query(f"{title} {author or ''}")
        url = SEARCH_URL.format(query=quote_plus(query))
        if log:
            log.log(f'Scraping Audible for: "{query}"')

        html = await self.get_text(url, headers={
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        })
        return parse_search_page(html, log)
