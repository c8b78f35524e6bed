"""Parse and normalize provider payloads into canonical records."""
import html
import logging
import re
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from bookresolver.models import AudiobookRecord, AudiobookSearchResult, BookRecord

logger = logging.getLogger(__name__)

_TRAILING_PARENS = re.compile(r"\s*\(.*?\)$")
_HOURS = re.compile(r"(\d+)\s*hrs?\b", re.IGNORECASE)
_MINUTES = re.compile(r"(\d+)\s*mins?\b", re.IGNORECASE)
_UNSAFE_QUERY_CHARS = re.compile(r"[^\w\s\-']")
_WHITESPACE = re.compile(r"\s+")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %Y",
    "%b %Y",
    "%Y",
)


# ─── Text helpers ────────────────────────────────────────────────────────────

def decode_entities(text: Optional[str]) -> Optional[str]:
    """Decode HTML entities such as ``&amp;`` and ``&#39;``."""
    if not text:
        return text
    return html.unescape(text)


def clean_title(title: Optional[str]) -> Optional[str]:
    """Drop a trailing parenthetical such as a series marker."""
    if not title:
        return title
    return _TRAILING_PARENS.sub("", decode_entities(title)).strip()


def sanitize_search_query(text: Optional[str]) -> str:
    """Keep word characters, spaces, hyphens and apostrophes; cap at 100 chars."""
    if not text:
        return ""
    text = _UNSAFE_QUERY_CHARS.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:100]


def parse_duration(text: Optional[str]) -> Optional[int]:
    """
    Convert a runtime label to milliseconds.

    Args:
        text: e.g. "Length: 13 hrs and 31 mins", "45 mins"

    Returns:
        Milliseconds, or None if nothing parseable was found
    """
    if not text:
        return None
    hours = _HOURS.search(text)
    minutes = _MINUTES.search(text)
    total_minutes = (int(hours.group(1)) if hours else 0) * 60 + (int(minutes.group(1)) if minutes else 0)
    if total_minutes == 0:
        return None
    return total_minutes * 60 * 1000


def normalize_format(text: Optional[str]) -> Optional[str]:
    """Map a free-text binding/format label to physical, eBook or audio."""
    if not text:
        return None
    value = text.lower()
    if "hardcover" in value or "paperback" in value:
        return "physical"
    if "ebook" in value or "e-book" in value or "kindle" in value:
        return "eBook"
    if "audio" in value:
        return "audio"
    return None


def parse_date(value: Any) -> Optional[str]:
    """
    Normalize assorted date representations to ``YYYY-MM-DD``.

    Accepts epoch milliseconds, ISO strings, partial dates ("2019",
    "2019-05") and long-form dates ("May 3, 2019").
    """
    if value is None or value == "":
        return None

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date().isoformat()
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if re.fullmatch(r"\d{4}", text):
        return f"{text}-01-01"
    if re.fullmatch(r"\d{4}-\d{2}", text):
        return f"{text}-01"

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    logger.warning(f"Unparseable date: {text}")
    return None


def _https(url: Optional[str]) -> Optional[str]:
    if url and url.startswith("http:"):
        return "https:" + url[len("http:"):]
    return url


# ─── Google Books ────────────────────────────────────────────────────────────

def parse_google_volume(item: Dict[str, Any]) -> Optional[BookRecord]:
    """
    Parse a single volume from the Google Books API into a full record.

    Args:
        item: Volume resource (``/volumes/{id}`` or one search item)

    Returns:
        BookRecord, or None if the volume has no id
    """
    volume_id = item.get("id")
    if not volume_id:
        return None

    volume_info = item.get("volumeInfo") or {}
    sale_info = item.get("saleInfo") or {}

    isbn10 = isbn13 = None
    for identifier in volume_info.get("industryIdentifiers") or []:
        if identifier.get("type") == "ISBN_13" and not isbn13:
            isbn13 = identifier.get("identifier")
        elif identifier.get("type") == "ISBN_10" and not isbn10:
            isbn10 = identifier.get("identifier")

    # Prefer the largest cover available
    image_links = volume_info.get("imageLinks") or {}
    cover = (
        image_links.get("large")
        or image_links.get("medium")
        or image_links.get("thumbnail")
        or image_links.get("smallThumbnail")
    )

    book_format = None
    if sale_info.get("isEbook"):
        book_format = "eBook"
    elif volume_info.get("printType") == "BOOK":
        book_format = "physical"

    return BookRecord(
        api_id=None,
        google_volume_id=volume_id,
        api_source="google_books",
        source="google_books",
        title=volume_info.get("title") or "",
        authors=list(volume_info.get("authors") or []),
        description=volume_info.get("description"),
        cover_image_url=_https(cover),
        format=book_format,
        genres=list(volume_info.get("categories") or []),
        language=volume_info.get("language"),
        publisher=volume_info.get("publisher"),
        publication_date=parse_date(volume_info.get("publishedDate")),
        total_pages=volume_info.get("pageCount"),
        isbn10=isbn10,
        isbn13=isbn13,
        rating=volume_info.get("averageRating"),
        rating_count=volume_info.get("ratingsCount"),
        extraction_method="google_books_api",
        extra={
            "subtitle": volume_info.get("subtitle"),
            "maturity_rating": volume_info.get("maturityRating"),
            "preview_link": volume_info.get("previewLink"),
            "info_link": volume_info.get("infoLink"),
            "sale_info": {
                "country": sale_info.get("country"),
                "saleability": sale_info.get("saleability"),
                "is_ebook": bool(sale_info.get("isEbook")),
            },
        },
    )


def parse_google_list_item(item: Dict[str, Any]) -> Optional[BookRecord]:
    """Lighter projection of a search hit, for result lists."""
    volume_id = item.get("id")
    if not volume_id:
        return None

    volume_info = item.get("volumeInfo") or {}
    image_links = volume_info.get("imageLinks") or {}
    cover = image_links.get("thumbnail") or image_links.get("smallThumbnail")

    return BookRecord(
        api_id=volume_id,
        api_source="google_books",
        google_volume_id=volume_id,
        source="api",
        title=volume_info.get("title") or "",
        authors=list(volume_info.get("authors") or []),
        cover_image_url=_https(cover),
        publication_date=parse_date(volume_info.get("publishedDate")),
        rating=volume_info.get("averageRating"),
        rating_count=volume_info.get("ratingsCount"),
        publisher=volume_info.get("publisher"),
        genres=list(volume_info.get("categories") or []),
    )


def parse_google_volumes_response(response_json: Dict[str, Any]) -> List[BookRecord]:
    """
    Parse a full Google Books search response into list items.

    Args:
        response_json: Complete API response JSON

    Returns:
        List of records (empty if no items found)
    """
    books = []
    for item in response_json.get("items") or []:
        try:
            book = parse_google_list_item(item)
        except (AttributeError, TypeError) as e:
            # APIs can be unpredictable; skip the item rather than the page
            logger.warning(f"Failed to parse Google Books item: {e}")
            continue
        if book:
            books.append(book)
    return books


# ─── Spotify ─────────────────────────────────────────────────────────────────

def _names(entries) -> List[str]:
    return [entry.get("name") for entry in entries or [] if entry and entry.get("name")]


def parse_spotify_audiobook(
    data: Dict[str, Any],
    audiobook_id: str,
    duration_ms: Optional[int] = None,
) -> AudiobookRecord:
    """
    Map a Spotify audiobook resource to an AudiobookRecord.

    Duration is not read from the payload; it is passed in after walking
    every chapter page.
    """
    images = data.get("images") or []
    return AudiobookRecord(
        spotify_id=audiobook_id,
        title=data.get("name"),
        author=", ".join(_names(data.get("authors"))) or "Unknown",
        narrator=", ".join(_names(data.get("narrators"))) or "Unknown",
        description=data.get("description") or None,
        duration_ms=duration_ms or None,
        total_chapters=data.get("total_chapters") or 0,
        publisher=data.get("publisher") or None,
        release_date=data.get("release_date") or None,
        isbn=(data.get("external_ids") or {}).get("isbn") or None,
        cover_url=images[0].get("url") if images else None,
    )


def parse_spotify_search(data: Dict[str, Any]) -> List[AudiobookSearchResult]:
    """Parse a Spotify ``/search?type=audiobook`` response."""
    results = []
    for item in (data.get("audiobooks") or {}).get("items") or []:
        if not item or not item.get("id"):
            continue
        authors = _names(item.get("authors"))
        images = item.get("images") or []
        results.append(AudiobookSearchResult(
            spotify_id=item["id"],
            title=item.get("name") or "",
            author=", ".join(authors) or "Unknown",
            narrator=", ".join(_names(item.get("narrators"))) or "Unknown",
            cover_url=images[0].get("url") if images else None,
            total_chapters=item.get("total_chapters") or 0,
            authors=authors,
        ))
    return results
