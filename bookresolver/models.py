"""Data models for books and audiobooks."""
from dataclasses import dataclass, field, asdict, fields
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any

# Keys kept under the nested ``metadata`` object on the wire.
METADATA_FIELDS = (
    "extraction_method",
    "authors",
    "series",
    "series_number",
    "rating_count",
    "review_count",
    "awards",
    "edition_count",
)


@dataclass
class BookRecord:
    """Book projection assembled from one or more sources.

    ``None`` means the field has not been filled by any source yet; an
    empty string or empty list means a source reported it as empty.
    """
    api_id: Optional[str] = None
    api_source: Optional[str] = None
    google_volume_id: Optional[str] = None
    source: Optional[str] = None
    title: Optional[str] = None
    authors: Optional[List[str]] = None
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    format: Optional[str] = None
    genres: Optional[List[str]] = None
    language: Optional[str] = None
    edition: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[str] = None
    total_pages: Optional[int] = None
    total_duration: Optional[int] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    rating: Optional[float] = None
    series: Optional[str] = None
    series_number: Optional[float] = None
    rating_count: Optional[int] = None
    review_count: Optional[int] = None
    awards: Optional[str] = None
    edition_count: Optional[int] = None
    extraction_method: Optional[str] = None
    has_user_edits: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def primary_author(self) -> Optional[str]:
        """First listed author, if any."""
        return self.authors[0] if self.authors else None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the row/wire shape with a nested ``metadata`` object."""
        metadata = {
            name: getattr(self, name)
            for name in METADATA_FIELDS
            if getattr(self, name) is not None
        }
        metadata.update(self.extra)
        return {
            "api_id": self.api_id,
            "api_source": self.api_source,
            "google_volume_id": self.google_volume_id,
            "cover_image_url": self.cover_image_url,
            "description": self.description,
            "edition": self.edition,
            "format": self.format,
            "genres": self.genres if self.genres is not None else [],
            "has_user_edits": self.has_user_edits,
            "isbn10": self.isbn10,
            "isbn13": self.isbn13,
            "language": self.language,
            "metadata": metadata,
            "publication_date": self.publication_date,
            "publisher": self.publisher,
            "rating": self.rating,
            "source": self.source,
            "title": self.title or "",
            "total_duration": self.total_duration,
            "total_pages": self.total_pages,
        }

    def to_list_item(self) -> Dict[str, Any]:
        """Serialize as a search-list entry."""
        item = self.to_dict()
        item["bookUrl"] = self.api_id or self.google_volume_id
        item["epub_url"] = ""
        return item

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BookRecord":
        """Rebuild a record from a stored ``books`` row."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in row.items() if k in known and k != "extra"}
        metadata = dict(row.get("metadata") or {})
        for name in METADATA_FIELDS:
            if name in metadata:
                values[name] = metadata.pop(name)
        published = values.get("publication_date")
        if isinstance(published, datetime):
            values["publication_date"] = published.date().isoformat()
        elif isinstance(published, date):
            values["publication_date"] = published.isoformat()
        if isinstance(values.get("rating"), Decimal):
            values["rating"] = float(values["rating"])
        values["extra"] = metadata
        return cls(**values)


@dataclass
class AudiobookRecord:
    """Audiobook details as returned by the catalog or the cache."""
    spotify_id: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    narrator: Optional[str] = None
    description: Optional[str] = None
    duration_ms: Optional[int] = None
    total_chapters: Optional[int] = None
    publisher: Optional[str] = None
    release_date: Optional[str] = None
    isbn: Optional[str] = None
    cover_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AudiobookRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in known})


@dataclass
class AudiobookSearchResult:
    """One audiobook search hit."""
    spotify_id: str
    title: str
    author: str
    narrator: str
    cover_url: Optional[str]
    total_chapters: int
    authors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spotify_id": self.spotify_id,
            "title": self.title,
            "author": self.author,
            "narrator": self.narrator,
            "cover_url": self.cover_url,
            "total_chapters": self.total_chapters,
        }


@dataclass
class AudibleRecord:
    """Audiobook facts scraped from a public store page."""
    asin: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    narrator: Optional[str] = None
    duration_ms: Optional[int] = None
    cover_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Credential:
    """Bearer token held in the single-row credential slot."""
    slot_id: int
    access_token: str
    expires_at: datetime

    def is_fresh(self, now: datetime, buffer_seconds: int = 60) -> bool:
        return self.expires_at > now + timedelta(seconds=buffer_seconds)


@dataclass
class BookIdentifier:
    """Identifiers accepted by the book resolver."""
    api_id: Optional[str] = None
    isbn: Optional[str] = None
    google_volume_id: Optional[str] = None


@dataclass
class MatchResult:
    is_match: bool
    title_score: float
    author_score: Optional[float] = None


@dataclass
class ConsensusFact:
    value: int
    support: int
