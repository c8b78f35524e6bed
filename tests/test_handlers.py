"""Tests for the request handlers."""
import asyncio
from datetime import timedelta

import pytest

from bookresolver import handlers
from bookresolver.credentials import utcnow
from bookresolver.errors import (
    ConfigurationUnavailable,
    ResolutionFailed,
    UpstreamNotFound,
    ValidationError,
)
from bookresolver.models import AudiobookRecord, BookIdentifier, BookRecord, Credential
from bookresolver.request_log import RequestLog

VOLUMES = "www.googleapis.com/books/v1/volumes"
SPOTIFY = "api.spotify.com/v1"

GOOGLE_VOLUME = {
    "id": "vol1",
    "volumeInfo": {
        "title": "Dune",
        "authors": ["Frank Herbert"],
        "industryIdentifiers": [{"type": "ISBN_13", "identifier": "9780441013593"}],
    },
}

GOODREADS_PAGE = """
<html><head><script type="application/ld+json">
{"@type": "Book", "name": "Dune", "author": [{"name": "Frank Herbert"}]}
</script></head><body></body></html>
"""


async def settle():
    """Let fire-and-forget writes run."""
    for _ in range(5):
        await asyncio.sleep(0)


def run(coro_factory):
    async def scenario():
        result = await coro_factory()
        await settle()
        return result

    return asyncio.run(scenario())


def fresh_token(store):
    store.credentials[1] = Credential(1, "token", utcnow() + timedelta(hours=1))


# ─── resolve_book ───────────────────────────────────────────────────────────

def test_resolve_book_rejects_non_string_identifier(store, http, config):
    """Type errors fail fast, before any lookup."""
    with pytest.raises(ValidationError) as exc_info:
        run(lambda: handlers.resolve_book(BookIdentifier(isbn=9780441013593), store, http, config, RequestLog()))

    assert exc_info.value.message == "Identifiers must be strings"
    assert store.calls == []


def test_resolve_book_requires_an_identifier(store, http, config):
    """An empty request is a 400."""
    with pytest.raises(ValidationError) as exc_info:
        run(lambda: handlers.resolve_book(BookIdentifier(), store, http, config, RequestLog()))

    assert exc_info.value.status_code == 400
    assert "One of api_id, isbn, or google_volume_id is required" in exc_info.value.message


def test_resolve_book_by_isbn_from_database(store, router, http, config):
    """A stored row answers without a write-back."""
    store.books.append(BookRecord(title="Stored Dune", isbn13="9780441013593", api_source="google_books"))

    result = run(lambda: handlers.resolve_book(
        BookIdentifier(isbn="9780441013593"), store, http, config, RequestLog()))

    assert result["title"] == "Stored Dune"
    assert "upsert_book" not in store.calls


def test_resolve_book_by_isbn_from_google_writes_back(store, router, http, config):
    """A catalog hit is returned and stored in the background."""
    router.json("GET", VOLUMES, {"items": [GOOGLE_VOLUME]})

    result = run(lambda: handlers.resolve_book(
        BookIdentifier(isbn="978-0441013593"), store, http, config, RequestLog()))

    assert result["title"] == "Dune"
    assert result["google_volume_id"] == "vol1"
    assert result["metadata"]["authors"] == ["Frank Herbert"]
    assert store.calls.count("upsert_book") == 1
    assert store.books[0].google_volume_id == "vol1"


def test_resolve_book_write_failure_does_not_change_response(store, router, http, config):
    """A failed write-back is only logged."""
    router.json("GET", VOLUMES, {"items": [GOOGLE_VOLUME]})
    store.fail_writes = True
    log = RequestLog()

    result = run(lambda: handlers.resolve_book(BookIdentifier(isbn="9780441013593"), store, http, config, log))

    assert result["title"] == "Dune"
    assert any("Failed to store book in database" in e["message"] for e in log.get_logs() if e["type"] == "error")


def test_resolve_book_all_strategies_fail(store, router, http, config):
    """Both misses aggregate into a 404 naming the identifier."""
    router.json("GET", VOLUMES, {"totalItems": 0})
    log = RequestLog()

    with pytest.raises(ResolutionFailed) as exc_info:
        run(lambda: handlers.resolve_book(BookIdentifier(isbn="123"), store, http, config, log))

    error = exc_info.value
    assert error.status_code == 404
    assert error.message == "Book not found with ISBN: 123. Neither database nor external API returned results."
    assert len(error.errors) == 2
    assert any("All fetch methods failed for ISBN: 123" in e["message"] for e in log.get_logs())


def test_resolve_book_by_volume_id(store, router, http, config):
    """Volume ids race the stored row against the volume endpoint."""
    router.json("GET", f"{VOLUMES}/vol1", GOOGLE_VOLUME)

    result = run(lambda: handlers.resolve_book(
        BookIdentifier(google_volume_id="vol1"), store, http, config, RequestLog()))

    assert result["google_volume_id"] == "vol1"


def test_resolve_book_without_google_key_uses_goodreads(store, router, http, config):
    """No key: an ISBN is ignored in favour of the Goodreads id."""
    config.GOOGLE_BOOKS_API_KEY = None
    router.text("GET", "www.goodreads.com/book/show/234225", GOODREADS_PAGE)

    result = run(lambda: handlers.resolve_book(
        BookIdentifier(isbn="9780441013593", api_id="234225"), store, http, config, RequestLog()))

    assert result["title"] == "Dune"
    assert result["api_source"] == "goodreads"
    assert result["metadata"]["extraction_method"] == "schema"
    assert router.count("GET", VOLUMES) == 0


def test_resolve_book_without_google_key_and_no_api_id(store, http, config):
    """Only Google identifiers and no key: 503, no lookups."""
    config.GOOGLE_BOOKS_API_KEY = None

    with pytest.raises(ConfigurationUnavailable) as exc_info:
        run(lambda: handlers.resolve_book(BookIdentifier(isbn="123"), store, http, config, RequestLog()))

    assert exc_info.value.status_code == 503
    assert store.calls == []


# ─── search_books ───────────────────────────────────────────────────────────

GOODREADS_SEARCH = """
<table><tr itemscope itemtype="http://schema.org/Book">
  <td><a class="bookTitle" href="/book/show/234225"><span itemprop="name">Dune</span></a>
  <span class="authorName"><span itemprop="name">Frank Herbert</span></span>
  <span class="minirating">4.27 avg rating — 10 ratings</span></td>
</tr></table>
"""


def test_search_books_merges_and_records_history(store, router, http, config):
    """Both providers are merged and the search is saved."""
    router.json("GET", VOLUMES, {"items": [
        {"id": "vol1", "volumeInfo": {"title": "Dune", "authors": ["Frank Herbert"]}},
        {"id": "vol2", "volumeInfo": {"title": "Dune Messiah", "authors": ["Frank Herbert"]}},
    ]})
    router.text("GET", "www.goodreads.com/search", GOODREADS_SEARCH)

    result = run(lambda: handlers.search_books("dune", "user-1", store, http, config, RequestLog()))

    titles = [(b["title"], b["api_source"]) for b in result["bookList"]]
    assert titles == [("Dune", "goodreads"), ("Dune Messiah", "google_books")]
    assert result["bookList"][0]["bookUrl"] == "234225"
    assert result["logs"]
    assert store.searches == [("user-1", "dune", 2)]


def test_search_books_without_google_key(store, router, http, config):
    """Google is skipped, not failed, when no key is configured."""
    config.GOOGLE_BOOKS_API_KEY = None
    router.text("GET", "www.goodreads.com/search", GOODREADS_SEARCH)

    result = run(lambda: handlers.search_books("dune", None, store, http, config, RequestLog()))

    assert len(result["bookList"]) == 1
    assert router.count("GET", VOLUMES) == 0
    assert store.searches == []


def test_search_books_blank_query(store, http, config):
    """A blank query is a 400."""
    with pytest.raises(ValidationError):
        run(lambda: handlers.search_books("   ", "user-1", store, http, config, RequestLog()))


def test_search_books_provider_failures_give_empty_list(store, router, http, config):
    """Every provider failing is still a successful, empty search."""
    router.json("GET", VOLUMES, {}, status_code=500)
    router.text("GET", "www.goodreads.com/search", "", status_code=503)

    result = run(lambda: handlers.search_books("dune", "u", store, http, config, RequestLog()))

    assert result["bookList"] == []


# ─── resolve_audiobook ──────────────────────────────────────────────────────

SPOTIFY_AUDIOBOOK = {
    "name": "Dune",
    "authors": [{"name": "Frank Herbert"}],
    "narrators": [{"name": "Scott Brick"}],
    "total_chapters": 2,
    "chapters": {"items": [{"duration_ms": 1000}, {"duration_ms": 2000}], "next": None},
}


def test_audiobook_by_id_from_cache(store, router, http, config):
    """A cached row answers the direct lookup."""
    fresh_token(store)
    store.audiobooks["sp1"] = AudiobookRecord(spotify_id="sp1", title="Cached Dune", duration_ms=5)

    result = run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), audiobook_id="sp1"))

    assert result == {"success": True, "source": "spotify", "data": AudiobookRecord(
        spotify_id="sp1", title="Cached Dune", duration_ms=5).to_dict()}


def test_audiobook_by_id_from_spotify_is_cached(store, router, http, config):
    """A catalog hit with a duration is written back."""
    fresh_token(store)
    router.json("GET", f"{SPOTIFY}/audiobooks/sp1", SPOTIFY_AUDIOBOOK)

    result = run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), audiobook_id="sp1"))

    assert result["data"]["duration_ms"] == 3000
    assert result["data"]["narrator"] == "Scott Brick"
    assert store.audiobooks["sp1"].duration_ms == 3000


def test_audiobook_by_id_without_spotify_credentials(store, router, http, config):
    """A cache miss with no catalog credentials is a 503, not a 404."""
    config.SPOTIFY_CLIENT_ID = None

    with pytest.raises(ConfigurationUnavailable) as exc_info:
        run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), audiobook_id="abc"))

    assert exc_info.value.status_code == 503
    assert router.requests == []


def test_audiobook_by_id_cache_hit_without_spotify_credentials(store, http, config):
    """The cache still answers when the catalog is not configured."""
    config.SPOTIFY_CLIENT_ID = None
    store.audiobooks["abc"] = AudiobookRecord(spotify_id="abc", title="Dune", duration_ms=5)

    result = run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), audiobook_id="abc"))

    assert result["data"]["title"] == "Dune"


def test_audiobook_without_duration_is_not_cached(store, router, http, config):
    """No chapters, no duration, no cache row."""
    fresh_token(store)
    router.json("GET", f"{SPOTIFY}/audiobooks/sp1", {"name": "Dune", "chapters": {"items": [], "next": None}})

    result = run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), audiobook_id="sp1"))

    assert result["data"]["duration_ms"] is None
    assert "upsert_cached_audiobook" not in store.calls


def test_audiobook_by_book_uses_community_consensus(store, http, config):
    """Agreeing submissions become a duration in milliseconds."""
    store.durations["book-1"] = [10, 10, 3]

    result = run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), book_id="book-1"))

    assert result["source"] == "community"
    assert result["data"]["duration_ms"] == 10 * 3_600_000
    assert result["data"]["spotify_id"] is None


def test_audiobook_by_book_without_consensus_is_not_found(store, http, config):
    """No consensus and no title to fall back to."""
    store.durations["book-1"] = [10]

    with pytest.raises(UpstreamNotFound) as exc_info:
        run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), book_id="book-1"))

    assert exc_info.value.message == "No audiobook found"


def test_audiobook_by_title_validates_candidates(store, router, http, config):
    """The first candidate passing the match check is resolved."""
    fresh_token(store)
    router.json("GET", f"{SPOTIFY}/search", {"audiobooks": {"items": [
        {"id": "wrong", "name": "Dune: The Graphic Novel", "authors": [{"name": "Brian Herbert"}]},
        {"id": "sp1", "name": "Dune", "authors": [{"name": "Frank Herbert"}]},
    ]}})
    router.json("GET", f"{SPOTIFY}/audiobooks/sp1", SPOTIFY_AUDIOBOOK)

    result = run(lambda: handlers.resolve_audiobook(
        store, http, config, RequestLog(), book_id="book-1", title="Dune", author="Frank Herbert"))

    assert result["source"] == "spotify"
    assert result["data"]["spotify_id"] == "sp1"
    search = next(r for r in router.requests if r.url.path.endswith("/search"))
    assert search.url.params["q"] == "Dune Frank Herbert"
    assert search.url.params["limit"] == "5"


def test_audiobook_by_title_no_acceptable_match(store, router, http, config):
    """Candidates that fail validation are never returned."""
    fresh_token(store)
    router.json("GET", f"{SPOTIFY}/search", {"audiobooks": {"items": [
        {"id": "x", "name": "Something Else Entirely", "authors": [{"name": "Nobody"}]},
    ]}})

    with pytest.raises(UpstreamNotFound):
        run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog(), title="Dune"))


def test_audiobook_no_input(store, http, config):
    """Nothing to look up is a 404."""
    with pytest.raises(UpstreamNotFound):
        run(lambda: handlers.resolve_audiobook(store, http, config, RequestLog()))


# ─── search_audiobooks ──────────────────────────────────────────────────────

@pytest.mark.parametrize("query,message", [
    (None, "query is required"),
    (42, "query is required"),
    ("a", "query must be at least 2 characters"),
])
def test_search_audiobooks_validation(store, http, config, query, message):
    """Queries must be strings of two or more characters."""
    with pytest.raises(ValidationError) as exc_info:
        run(lambda: handlers.search_audiobooks(store, http, config, RequestLog(), query=query))

    assert exc_info.value.message == message


@pytest.mark.parametrize("limit,sent", [(0, "1"), (10, "10"), (500, "50")])
def test_search_audiobooks_clamps_limit(store, router, http, config, limit, sent):
    """The limit is clamped to 1..50."""
    fresh_token(store)
    router.json("GET", f"{SPOTIFY}/search", {"audiobooks": {"items": [
        {"id": "a", "name": "Dune", "authors": [{"name": "Frank Herbert"}]},
    ]}})

    result = run(lambda: handlers.search_audiobooks(store, http, config, RequestLog(), query="dune", limit=limit))

    assert result["success"] is True
    assert result["data"][0]["author"] == "Frank Herbert"
    assert router.requests[-1].url.params["limit"] == sent


# ─── resolve_audible_audiobook ──────────────────────────────────────────────

AUDIBLE_PAGE = """
<li class="productListItem">
  <h3 class="bc-heading"><a href="/pd/Dune/B002V1OF70">Dune</a></h3>
  <span class="runtimeLabel">Length: 21 hrs and 2 mins</span>
</li>
"""


def test_audible_requires_title(http, config):
    """A title is required."""
    with pytest.raises(ValidationError) as exc_info:
        run(lambda: handlers.resolve_audible_audiobook(http, config, RequestLog()))

    assert exc_info.value.message == "Title is required"


def test_audible_found(router, http, config):
    """A usable hit is returned with the log trail."""
    router.text("GET", "www.audible.com/search", AUDIBLE_PAGE)

    result = run(lambda: handlers.resolve_audible_audiobook(http, config, RequestLog(), title="Dune"))

    assert result["success"] is True
    assert result["source"] == "audible"
    assert result["data"]["asin"] == "B002V1OF70"
    assert any(e["message"] == "Audible lookup successful" for e in result["logs"])


def test_audible_not_found(router, http, config):
    """No usable hit is a 404."""
    router.text("GET", "www.audible.com/search", "<html><title>No results</title></html>")

    with pytest.raises(UpstreamNotFound):
        run(lambda: handlers.resolve_audible_audiobook(http, config, RequestLog(), title="Dune"))
