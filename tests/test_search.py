"""Tests for search aggregation and deduplication."""
import asyncio

from bookresolver.errors import UpstreamTransientFailure
from bookresolver.models import BookRecord
from bookresolver.race import Strategy
from bookresolver.request_log import RequestLog
from bookresolver.search import dedup_key, deduplicate_books, richness, search_and_deduplicate


def book(title, author, rating=None, cover=None, source="google_books"):
    return BookRecord(title=title, authors=[author] if author else [], rating=rating,
                      cover_image_url=cover, api_source=source)


def test_dedup_key_normalizes_title_and_first_author():
    """Punctuation and case do not split duplicates."""
    a = BookRecord(title="Dune!", authors=["Frank Herbert", "Someone"])
    b = BookRecord(title="dune", authors=["FRANK HERBERT"])

    assert dedup_key(a) == dedup_key(b) == ("dune", "frank herbert")


def test_richness_score():
    """One point each for a rating and a cover."""
    assert richness(book("A", "X")) == 0
    assert richness(book("A", "X", rating=4.0)) == 1
    assert richness(book("A", "X", rating=4.0, cover="c")) == 2


def test_deduplicate_keeps_richer_record_in_first_slot():
    """A richer duplicate replaces the kept one without moving it."""
    poor = book("Dune", "Frank Herbert", source="google_books")
    other = book("Emma", "Jane Austen")
    rich = book("DUNE", "frank herbert", rating=4.3, cover="c", source="goodreads")

    result = deduplicate_books([poor, other, rich])

    assert result == [rich, other]


def test_deduplicate_tie_keeps_first_seen():
    """Equal richness keeps the earlier record."""
    first = book("Dune", "Frank Herbert", rating=4.0, source="google_books")
    second = book("Dune", "Frank Herbert", cover="c", source="goodreads")

    assert deduplicate_books([first, second]) == [first]


def test_search_and_deduplicate_tolerates_failed_provider():
    """A failing provider contributes nothing; the others still count."""
    async def google():
        raise UpstreamTransientFailure("Google Books timed out")

    async def goodreads():
        return [book("Dune", "Frank Herbert", source="goodreads"), book("Emma", "Jane Austen")]

    log = RequestLog()
    results = asyncio.run(search_and_deduplicate(
        [Strategy("Google Books", google), Strategy("Goodreads", goodreads)], log))

    assert [b.title for b in results] == ["Dune", "Emma"]
    messages = [entry["message"] for entry in log.get_logs()]
    assert any("Google Books search failed" in m for m in messages)
    assert any("0 Google Books + 2 Goodreads = 2 total, 2 after deduplication" in m for m in messages)


def test_search_and_deduplicate_merges_providers_in_order():
    """Results keep provider order, then insertion order."""
    async def google():
        return [book("Dune", "Frank Herbert"), book("Emma", "Jane Austen")]

    async def goodreads():
        return [book("Dune", "Frank Herbert", rating=4.2, source="goodreads"), book("Ubik", "Philip K. Dick")]

    results = asyncio.run(search_and_deduplicate(
        [Strategy("Google Books", google), Strategy("Goodreads", goodreads)]))

    assert [(b.title, b.api_source) for b in results] == [
        ("Dune", "goodreads"),
        ("Emma", "google_books"),
        ("Ubik", "google_books"),
    ]


def test_search_all_providers_empty():
    """No results is an empty list, not an error."""
    async def nothing():
        return []

    assert asyncio.run(search_and_deduplicate([Strategy("A", nothing), Strategy("B", nothing)])) == []
