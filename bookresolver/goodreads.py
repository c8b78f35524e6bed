"""Goodreads book pages and search results."""
import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

import httpx

from bookresolver.async_client import AsyncSourceClient, USER_AGENT
from bookresolver.documents import ParsedDocument
from bookresolver.errors import UpstreamNotFound
from bookresolver.merge import SelectorRule, fill_fields, selector_extractor
from bookresolver.models import BookRecord
from bookresolver.parse import clean_title, decode_entities, normalize_format, parse_date
from bookresolver.request_log import RequestLog

logger = logging.getLogger(__name__)

BOOK_URL = "https://www.goodreads.com/book/show/{api_id}"
SEARCH_URL = "https://www.goodreads.com/search?q={query}"

_SERIES_SUFFIX = re.compile(r"(.+?)(?:\s*#[\d.]+)?$")
_SERIES_IN_TITLE = re.compile(r"^(.*?)\s*\(([^#]+?),?\s*#([\d.]+)(?:,.*)?\)$")
_FIRST_PUBLISHED = re.compile(r"(?:First published|Expected publication|Published)\s+(.+)")
_PUBLISHED_BY = re.compile(r"by (.+)$")
_PAGES = re.compile(r"(\d+)\s+pages")
_ISBN10 = re.compile(r"ISBN-10:?\s*(\d{9}[\dX])")
_ISBN13 = re.compile(r"ISBN-13:?\s*(\d{13})")
_RATING = re.compile(r"(\d+\.\d+) avg rating")
_RATINGS_COUNT = re.compile(r"[—–-]\s*([\d,]+) ratings?")
_PUBLISHED_YEAR = re.compile(r"published\s+(\d{4})")
_EDITIONS = re.compile(r"(\d+) editions")


def _offer(values: Dict[str, Any], key: str, value: Any):
    """Keep the first non-empty candidate for a key within one extractor."""
    if value is None or value == "" or value == []:
        return
    values.setdefault(key, value)


def _float(text) -> Optional[float]:
    try:
        return float(text)
    except (TypeError, ValueError):
        return None


def _int(text) -> Optional[int]:
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


def _name(entry) -> Optional[str]:
    if isinstance(entry, dict):
        return decode_entities(entry.get("name"))
    return decode_entities(entry) if entry else None


# ─── Extractors (highest priority first) ────────────────────────────────────

def _find_book_props(next_data: Dict[str, Any], api_id: Optional[str]) -> Optional[Dict[str, Any]]:
    page_props = (next_data.get("props") or {}).get("pageProps") or {}
    if page_props.get("book"):
        return page_props["book"]

    apollo_state = page_props.get("apolloState") or {}
    legacy_id = _int((api_id or "").split("-")[0].split(".")[0])
    for key, candidate in apollo_state.items():
        if key.startswith("Book:") and isinstance(candidate, dict) and candidate.get("legacyId") == legacy_id:
            return candidate
    return None


def extract_next_data(document: ParsedDocument, book: BookRecord) -> Dict[str, Any]:
    """Fields from the embedded ``__NEXT_DATA__`` JSON blob."""
    script = document.script_text("script#__NEXT_DATA__")
    if not script:
        return {}

    next_data = json.loads(script)
    props = _find_book_props(next_data, book.api_id)
    if not props:
        return {}

    page_props = (next_data.get("props") or {}).get("pageProps") or {}
    apollo_state = page_props.get("apolloState") or {}
    values: Dict[str, Any] = {}

    _offer(values, "title", clean_title(props.get("title")))
    _offer(values, "cover_image_url", props.get("imageUrl") or props.get("coverImage"))
    _offer(values, "description", decode_entities(props.get("description")))
    _offer(values, "total_pages", props.get("numPages"))
    _offer(values, "language", props.get("language") if isinstance(props.get("language"), str) else None)
    _offer(values, "publisher", props.get("publisher"))
    _offer(values, "publication_date", parse_date(props.get("publicationDate")))
    _offer(values, "rating", _float(props.get("rating")))

    identifiers = (
        ((page_props.get("bookDetails") or {}).get("details") or {}).get("details") or {}
    ).get("identifiers") or {}
    _offer(values, "isbn10", identifiers.get("isbn10"))
    _offer(values, "isbn13", identifiers.get("isbn13"))

    details = props.get("details") or {}
    _offer(values, "total_pages", details.get("numPages"))
    _offer(values, "publisher", details.get("publisher"))
    _offer(values, "language", (details.get("language") or {}).get("name"))
    _offer(values, "isbn10", details.get("isbn"))
    _offer(values, "isbn13", details.get("isbn13"))
    _offer(values, "edition", details.get("edition"))
    _offer(values, "publication_date", parse_date(details.get("publicationTime")))
    _offer(values, "format", normalize_format(details.get("format")))
    _offer(values, "format", normalize_format(props.get("format")))

    genres = props.get("genres")
    if isinstance(genres, list):
        _offer(values, "genres", [g for g in (_name(entry) for entry in genres) if g])

    authors = props.get("authors")
    if isinstance(authors, list):
        _offer(values, "authors", [a for a in (_name(entry) for entry in authors) if a])
    else:
        ref = ((props.get("primaryContributorEdge") or {}).get("node") or {}).get("__ref")
        if ref and isinstance(apollo_state.get(ref), dict):
            _offer(values, "authors", [decode_entities(apollo_state[ref].get("name"))])

    series = props.get("series")
    if isinstance(series, dict):
        _offer(values, "series", series.get("name"))
    elif isinstance(series, str):
        _offer(values, "series", series)

    return values


extract_next_data.method = "next_data"


def extract_json_ld(document: ParsedDocument, book: BookRecord) -> Dict[str, Any]:
    """Fields from the schema.org linked-data block."""
    script = document.script_text('script[type="application/ld+json"]')
    if not script:
        return {}

    schema = json.loads(script)
    if isinstance(schema, list):
        schema = next((s for s in schema if isinstance(s, dict) and s.get("@type") == "Book"), None)
    if not isinstance(schema, dict):
        return {}

    values: Dict[str, Any] = {}
    _offer(values, "title", clean_title(schema.get("name")))
    _offer(values, "cover_image_url", schema.get("image"))
    _offer(values, "total_pages", _int(schema.get("numberOfPages")))
    _offer(values, "language", schema.get("inLanguage"))

    publisher = schema.get("publisher")
    _offer(values, "publisher", _name(publisher))

    isbn = (schema.get("isbn") or "").replace("-", "")
    if len(isbn) == 10:
        _offer(values, "isbn10", isbn)
    elif len(isbn) == 13:
        _offer(values, "isbn13", isbn)

    _offer(values, "format", normalize_format(schema.get("bookFormat")))

    authors = schema.get("author")
    if isinstance(authors, dict):
        authors = [authors]
    if isinstance(authors, list):
        _offer(values, "authors", [a for a in (_name(entry) for entry in authors) if a])

    rating = schema.get("aggregateRating") or {}
    _offer(values, "rating", _float(rating.get("ratingValue")))
    _offer(values, "rating_count", _int(rating.get("ratingCount")))
    _offer(values, "review_count", _int(rating.get("reviewCount")))
    _offer(values, "awards", decode_entities(schema.get("awards")))
    return values


extract_json_ld.method = "schema"


def _cover(src: str) -> Optional[str]:
    return None if "no-cover" in src or "nophoto" in src else src


def _series(text: str) -> Optional[str]:
    match = _SERIES_SUFFIX.match(decode_entities(text))
    return match.group(1).strip() if match else None


GOODREADS_HTML_RULES = [
    SelectorRule("title", ["h1.Text__title1", 'h1[data-testid="bookTitle"]'], transform=clean_title),
    SelectorRule("cover_image_url", [".BookCover img.ResponsiveImage", ".BookCover img"], attr="src", transform=_cover),
    SelectorRule(
        "description",
        [".BookPageMetadataSection__description .TruncatedContent__text", '[data-testid="description"]'],
        transform=decode_entities,
    ),
    SelectorRule("rating", [".RatingStatistics__rating"], transform=_float),
    SelectorRule("series", [".Text__title3.Text__italic"], transform=_series),
]

extract_html_fields = selector_extractor(GOODREADS_HTML_RULES, method="html")


def extract_html_details(document: ParsedDocument, book: BookRecord) -> Dict[str, Any]:
    """Fields that need a regex over a labelled block of the page."""
    values: Dict[str, Any] = {}

    if book.genres is None:
        genres = [decode_entities(g) for g in document.find_all_text(".BookPageMetadataSection__genres .Button--tag")]
        _offer(values, "genres", genres)

    if book.authors is None:
        _offer(values, "authors", [decode_entities(a) for a in document.find_all_text(".ContributorLink__name")])

    if book.publication_date is None or book.publisher is None:
        info = document.find_first(['.FeaturedDetails [data-testid="publicationInfo"]']) or ""
        published = _FIRST_PUBLISHED.search(info)
        if published:
            _offer(values, "publication_date", parse_date(published.group(1).strip()))
        publisher = _PUBLISHED_BY.search(info)
        if publisher:
            _offer(values, "publisher", decode_entities(publisher.group(1).strip()))

    if book.total_pages is None or book.format is None:
        pages_format = document.find_first(['.FeaturedDetails [data-testid="pagesFormat"]']) or ""
        pages = _PAGES.search(pages_format)
        if pages:
            _offer(values, "total_pages", int(pages.group(1)))
        _offer(values, "format", normalize_format(pages_format))

    if book.isbn10 is None or book.isbn13 is None:
        details = document.find_first(['[data-testid="bookDetails"]']) or ""
        isbn10 = _ISBN10.search(details)
        isbn13 = _ISBN13.search(details)
        if isbn10:
            _offer(values, "isbn10", isbn10.group(1))
        if isbn13:
            _offer(values, "isbn13", isbn13.group(1))

    return values


extract_html_details.method = "html"

GOODREADS_EXTRACTORS = [extract_next_data, extract_json_ld, extract_html_fields, extract_html_details]


def parse_book_page(html: str, api_id: str, log: Optional[RequestLog] = None) -> BookRecord:
    """
    Build a record from a Goodreads book page.

    Args:
        html: Page HTML
        api_id: Goodreads id the page was fetched for
        log: Request log

    Returns:
        BookRecord with whatever fields the page yielded
    """
    book = BookRecord(api_id=api_id, api_source="goodreads", source="goodreads")
    fill_fields(book, GOODREADS_EXTRACTORS, ParsedDocument.from_html(html), log)
    if book.genres:
        book.genres = [g for g in book.genres if "more" not in g]
    return book


def parse_search_results(html: str) -> List[BookRecord]:
    """Parse the rows of a Goodreads search results page."""
    document = ParsedDocument.from_html(html)
    books = []

    for row in document.scopes('tr[itemscope][itemtype="http://schema.org/Book"]'):
        full_title = row.find_first(['.bookTitle span[itemprop="name"]'])
        if not full_title:
            continue

        href = row.find_first(["a.bookTitle"], attr="href") or ""
        book_id = href.split("?")[0].replace("/book/show/", "")

        series_match = _SERIES_IN_TITLE.match(full_title)
        title = series_match.group(1).strip() if series_match else full_title

        rating_text = row.find_first(["span.minirating"]) or ""
        rating = _RATING.search(rating_text)
        ratings_count = _RATINGS_COUNT.search(rating_text)

        publication = row.find_first([".greyText.smallText.uitext"]) or ""
        year = _PUBLISHED_YEAR.search(publication)
        editions = _EDITIONS.search(row.find_first(['a.greyText[rel="nofollow"]']) or "")

        cover = row.find_first(["img.bookCover"], attr="src")

        books.append(BookRecord(
            api_id=book_id,
            api_source="goodreads",
            source="api",
            title=decode_entities(title),
            authors=row.find_all_text('.authorName span[itemprop="name"]'),
            cover_image_url=_cover(cover) if cover else None,
            publication_date=f"{year.group(1)}-01-01" if year else None,
            rating=float(rating.group(1)) if rating else None,
            rating_count=int(ratings_count.group(1).replace(",", "")) if ratings_count else None,
            series=series_match.group(2).strip() if series_match else None,
            series_number=float(series_match.group(3)) if series_match else None,
            edition_count=int(editions.group(1)) if editions else None,
            extra={"goodreads_id": book_id},
        ))

    return books


class GoodreadsClient(AsyncSourceClient):
    """Scrapes Goodreads book pages and search results."""

    name = "Goodreads"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 10):
        super().__init__(client=client, timeout=timeout)

    async def fetch_book(self, api_id: str, log: Optional[RequestLog] = None) -> BookRecord:
        """Fetch and extract one book page."""
        html = await self.get_text(BOOK_URL.format(api_id=api_id), headers={"User-Agent": USER_AGENT})
        book = parse_book_page(html, api_id, log)
        if not book.title:
            raise UpstreamNotFound(f"Goodreads page for {api_id} had no book data")
        return book

    async def search(self, query: str) -> List[BookRecord]:
        """Scrape the search results page for a query."""
        html = await self.get_text(SEARCH_URL.format(query=quote_plus(query)), headers={"User-Agent": USER_AGENT})
        return parse_search_results(html)
