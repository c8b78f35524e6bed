"""Request handlers for book and audiobook resolution.

Handlers are transport-independent coroutines. Each receives its
collaborators explicitly (store, shared httpx client, configuration and
the request log) and either returns the response payload or raises a
``ResolverError`` that the HTTP layer turns into a status code.
"""
import logging
from typing import Any, Awaitable, Dict, List, Optional

import httpx

from bookresolver.async_client import AsyncGoogleBooksClient
from bookresolver.audible import AudibleClient
from bookresolver.config import Config
from bookresolver.consensus import resolve_consensus
from bookresolver.credentials import CredentialCache
from bookresolver.errors import (
    ConfigurationUnavailable,
    ResolutionFailed,
    UpstreamNotFound,
    ValidationError,
)
from bookresolver.goodreads import GoodreadsClient
from bookresolver.matching import best_author_match, is_good_match
from bookresolver.models import AudiobookRecord, AudiobookSearchResult, BookIdentifier, BookRecord
from bookresolver.parse import sanitize_search_query
from bookresolver.race import Strategy, fire_and_forget, first_success
from bookresolver.request_log import RequestLog
from bookresolver.search import search_and_deduplicate
from bookresolver.spotify import MAX_SEARCH_LIMIT, SpotifyClient

logger = logging.getLogger(__name__)

MS_PER_HOUR = 60 * 60 * 1000


# ─── books ──────────────────────────────────────────────────────────────────

async def _stored_book(lookup: Awaitable[Optional[BookRecord]], what: str, log: RequestLog) -> BookRecord:
    book = await lookup
    if book is None:
        raise UpstreamNotFound(f"Book not found in database by {what}")
    log.log(f"Found book in database by {what}")
    return book


async def _fetched_book(fetch: Awaitable[BookRecord], store, source: str, log: RequestLog) -> BookRecord:
    book = await fetch
    log.log(f"Fetched book from {source}: {book.title}")
    fire_and_forget(store.upsert_book(book), log, what="store book in database")
    return book


async def resolve_book(
    identifier: BookIdentifier,
    store,
    http: httpx.AsyncClient,
    config: Config,
    log: RequestLog,
) -> Dict[str, Any]:
    """
    Resolve one book by ISBN, Google volume id or Goodreads id.

    The stored row and the external source are raced; whichever answers
    first wins. A book that came from outside is written back without
    waiting for the write.

    Args:
        identifier: Identifiers from the request body
        store: Async store
        http: Shared httpx client
        config: Configuration
        log: Request log

    Returns:
        Book record in wire shape

    Raises:
        ValidationError: no identifier, or a non-string one
        ConfigurationUnavailable: only Google identifiers and no API key
        ResolutionFailed: database and external source both failed
    """
    api_id, isbn, volume_id = identifier.api_id, identifier.isbn, identifier.google_volume_id
    if any(value is not None and not isinstance(value, str) for value in (api_id, isbn, volume_id)):
        raise ValidationError("Identifiers must be strings")
    if not (api_id or isbn or volume_id):
        raise ValidationError("One of api_id, isbn, or google_volume_id is required")

    api_key = config.GOOGLE_BOOKS_API_KEY

    if isbn and api_key:
        label = f"ISBN: {isbn}"
        log.log(f"Fetching book by ISBN: {isbn}")
        google = AsyncGoogleBooksClient(api_key, client=http, timeout=config.DEFAULT_TIMEOUT)
        strategies = [
            Strategy("database", lambda: _stored_book(store.find_book_by_isbn(isbn), "ISBN", log)),
            Strategy("Google Books", lambda: _fetched_book(google.search_by_isbn(isbn), store, "Google Books", log)),
        ]
    elif volume_id and api_key:
        label = f"Google Volume ID: {volume_id}"
        log.log(f"Fetching book by Google Volume ID: {volume_id}")
        google = AsyncGoogleBooksClient(api_key, client=http, timeout=config.DEFAULT_TIMEOUT)
        strategies = [
            Strategy("database", lambda: _stored_book(
                store.find_book("google_volume_id", volume_id), "Google Volume ID", log)),
            Strategy("Google Books", lambda: _fetched_book(google.get_volume(volume_id), store, "Google Books", log)),
        ]
    elif api_id:
        label = f"API ID: {api_id}"
        log.log(f"Fetching book by API ID (Goodreads): {api_id}")
        goodreads = GoodreadsClient(client=http, timeout=config.DEFAULT_TIMEOUT)
        strategies = [
            Strategy("database", lambda: _stored_book(store.find_book("api_id", api_id), "API ID", log)),
            Strategy("Goodreads", lambda: _fetched_book(goodreads.fetch_book(api_id, log), store, "Goodreads", log)),
        ]
    else:
        raise ConfigurationUnavailable(
            "Google Books API key not configured. Please provide api_id for Goodreads lookup."
        )

    try:
        book = await first_success(strategies, label, log)
    except ResolutionFailed as e:
        log.error(f"All fetch methods failed for {label}")
        raise ResolutionFailed(
            label,
            e.errors,
            message=f"Book not found with {label}. Neither database nor external API returned results.",
        ) from e

    return book.to_dict()


async def search_books(
    query: Any,
    user_id: Optional[str],
    store,
    http: httpx.AsyncClient,
    config: Config,
    log: RequestLog,
) -> Dict[str, Any]:
    """
    Search every book provider and return one deduplicated list.

    Args:
        query: Free-text query
        user_id: Caller, for the search history
        store: Async store
        http: Shared httpx client
        config: Configuration
        log: Request log

    Returns:
        ``{"bookList": [...], "logs": [...]}``
    """
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("Query parameter is required")

    log.log(f'Starting book search for query: "{query}"')
    goodreads = GoodreadsClient(client=http, timeout=config.DEFAULT_TIMEOUT)

    async def search_google() -> List[BookRecord]:
        if not config.GOOGLE_BOOKS_API_KEY:
            log.log("Google Books API key not configured, skipping Google Books search")
            return []
        google = AsyncGoogleBooksClient(config.GOOGLE_BOOKS_API_KEY, client=http, timeout=config.DEFAULT_TIMEOUT)
        return await google.search(query)

    books = await search_and_deduplicate(
        [
            Strategy("Google Books", search_google),
            Strategy("Goodreads", lambda: goodreads.search(query)),
        ],
        log,
    )

    if user_id:
        fire_and_forget(store.record_search(user_id, query, len(books)), log, what="save search history")

    return {"bookList": [book.to_list_item() for book in books], "logs": log.get_logs()}


# ─── audiobooks ─────────────────────────────────────────────────────────────

def _spotify(store, http: httpx.AsyncClient, config: Config) -> SpotifyClient:
    credentials = CredentialCache(
        store,
        http,
        config.SPOTIFY_CLIENT_ID,
        config.SPOTIFY_CLIENT_SECRET,
        slot_id=config.TOKEN_SLOT_ID,
        refresh_buffer=config.TOKEN_REFRESH_BUFFER,
        timeout=config.DEFAULT_TIMEOUT,
    )
    return SpotifyClient(credentials, client=http, timeout=config.DEFAULT_TIMEOUT)


async def get_audiobook_data(audiobook_id: str, store, spotify: SpotifyClient, log: RequestLog) -> AudiobookRecord:
    """
    Race the audiobook cache against the catalog for one id.

    Only records with a known duration are cached.
    """
    async def from_cache() -> AudiobookRecord:
        cached = await store.get_cached_audiobook(audiobook_id)
        if cached is None:
            raise UpstreamNotFound(f"Audiobook {audiobook_id} not cached")
        log.log(f"Cache hit for audiobook: {audiobook_id}")
        return cached

    async def from_spotify() -> AudiobookRecord:
        record = await spotify.get_audiobook(audiobook_id)
        log.log(f"Fetched audiobook from Spotify: {record.title}")
        if record.duration_ms:
            fire_and_forget(store.upsert_cached_audiobook(record), log, what="cache audiobook")
        return record

    try:
        return await first_success(
            [Strategy("cache", from_cache), Strategy("Spotify", from_spotify)],
            f"Spotify ID: {audiobook_id}",
            log,
        )
    except ResolutionFailed as e:
        # Missing catalog credentials outrank the cache miss
        unconfigured = next((err for err in e.errors if isinstance(err, ConfigurationUnavailable)), None)
        if unconfigured is not None:
            raise unconfigured from e
        raise


def _pick_match(
    candidates: List[AudiobookSearchResult],
    title: str,
    author: Optional[str],
    config: Config,
    log: RequestLog,
) -> Optional[AudiobookSearchResult]:
    for candidate in candidates:
        candidate_author = best_author_match(author, candidate.authors) or candidate.author
        match = is_good_match(
            title,
            candidate.title,
            author,
            candidate_author,
            title_threshold=config.TITLE_THRESHOLD,
            author_threshold=config.AUTHOR_THRESHOLD,
        )
        if match.is_match:
            log.log(
                f"Found match: {candidate.title} ({candidate.spotify_id}) "
                f"title={match.title_score:.2f} author={match.author_score}"
            )
            return candidate
        log.log(f"Rejected candidate: {candidate.title} (title={match.title_score:.2f})")
    return None


async def resolve_audiobook(
    store,
    http: httpx.AsyncClient,
    config: Config,
    log: RequestLog,
    audiobook_id: Any = None,
    book_id: Any = None,
    title: Any = None,
    author: Any = None,
) -> Dict[str, Any]:
    """
    Resolve an audiobook by catalog id, by community consensus or by title.

    The paths are tried in that order; each is skipped when its input is
    missing. A consensus miss falls through to the title search.

    Returns:
        ``{"success": True, "source": ..., "data": {...}}``

    Raises:
        UpstreamNotFound: no path produced an audiobook
    """
    if audiobook_id and isinstance(audiobook_id, str):
        log.log(f"Direct Spotify lookup for: {audiobook_id}")
        record = await get_audiobook_data(audiobook_id, store, _spotify(store, http, config), log)
        return {"success": True, "source": "spotify", "data": record.to_dict()}

    if book_id and isinstance(book_id, str):
        log.log(f"Checking community cache for book: {book_id}")
        fact = await resolve_consensus(store, book_id, quorum=config.CONSENSUS_QUORUM, log=log)
        if fact is not None:
            record = AudiobookRecord(duration_ms=fact.value * MS_PER_HOUR)
            return {"success": True, "source": "community", "data": record.to_dict()}

    if title and isinstance(title, str):
        author = author if isinstance(author, str) else None
        spotify = _spotify(store, http, config)
        query = sanitize_search_query(f"{title} {author or ''}")
        log.log(f'Searching Spotify for: "{query}"')

        candidates = await spotify.search_audiobooks(query, limit=config.AUDIOBOOK_MATCH_CANDIDATES)
        match = _pick_match(candidates, title, author, config, log)
        if match is not None:
            record = await get_audiobook_data(match.spotify_id, store, spotify, log)
            return {"success": True, "source": "spotify", "data": record.to_dict()}

        log.log("No Spotify results found")

    raise UpstreamNotFound("No audiobook found")


async def search_audiobooks(
    store,
    http: httpx.AsyncClient,
    config: Config,
    log: RequestLog,
    query: Any = None,
    limit: Any = 10,
) -> Dict[str, Any]:
    """Search the audiobook catalog; ``limit`` is clamped to 1..50."""
    if not query or not isinstance(query, str):
        raise ValidationError("query is required")
    if len(query) < 2:
        raise ValidationError("query must be at least 2 characters")

    try:
        limit = max(1, min(int(limit), MAX_SEARCH_LIMIT))
    except (TypeError, ValueError):
        raise ValidationError("limit must be a number")

    log.log(f'Searching audiobooks: "{query}"')
    results = await _spotify(store, http, config).search_audiobooks(query, limit=limit)
    log.log(f"Found {len(results)} results")
    return {"success": True, "data": [result.to_dict() for result in results]}


async def resolve_audible_audiobook(
    http: httpx.AsyncClient,
    config: Config,
    log: RequestLog,
    title: Any = None,
    author: Any = None,
) -> Dict[str, Any]:
    """Look an audiobook up on Audible's public search page."""
    if not title or not isinstance(title, str):
        raise ValidationError("Title is required")

    author = author if isinstance(author, str) else None
    log.log(f'Audible lookup for: "{title}" by "{author or "unknown"}"')

    audible = AudibleClient(client=http, timeout=config.SCRAPE_TIMEOUT)
    record = await audible.lookup(title, author, log)
    if record is None:
        log.log("No audiobook found on Audible")
        raise UpstreamNotFound("No audiobook found")

    log.log("Audible lookup successful")
    return {"success": True, "source": "audible", "data": record.to_dict(), "logs": log.get_logs()}
