"""Shared fixtures: an in-memory store and fake outbound HTTP."""
from typing import Dict, List, Optional

import httpx
import pytest

from bookresolver.config import Config
from bookresolver.errors import CacheWriteFailure
from bookresolver.models import AudiobookRecord, BookRecord, Credential


class FakeStore:
    """In-memory stand-in for AsyncStore."""

    def __init__(self):
        self.books: List[BookRecord] = []
        self.audiobooks: Dict[str, AudiobookRecord] = {}
        self.credentials: Dict[int, Credential] = {}
        self.durations: Dict[str, List[int]] = {}
        self.searches: List[tuple] = []
        self.fail_writes = False
        self.calls: List[str] = []

    def _write(self, name: str):
        self.calls.append(name)
        if self.fail_writes:
            raise CacheWriteFailure(f"{name} failed")

    async def find_book(self, column: str, value: str) -> Optional[BookRecord]:
        self.calls.append("find_book")
        return next((b for b in self.books if getattr(b, column) == value), None)

    async def find_book_by_isbn(self, isbn: str) -> Optional[BookRecord]:
        self.calls.append("find_book_by_isbn")
        return next((b for b in self.books if isbn in (b.isbn10, b.isbn13)), None)

    async def upsert_book(self, book: BookRecord):
        self._write("upsert_book")
        self.books.append(book)

    async def get_cached_audiobook(self, spotify_id: str) -> Optional[AudiobookRecord]:
        self.calls.append("get_cached_audiobook")
        return self.audiobooks.get(spotify_id)

    async def upsert_cached_audiobook(self, audiobook: AudiobookRecord):
        self._write("upsert_cached_audiobook")
        self.audiobooks[audiobook.spotify_id] = audiobook

    async def get_credential(self, slot_id: int) -> Optional[Credential]:
        self.calls.append("get_credential")
        return self.credentials.get(slot_id)

    async def upsert_credential(self, credential: Credential):
        self._write("upsert_credential")
        self.credentials[credential.slot_id] = credential

    async def list_audio_durations(self, book_id: str) -> List[int]:
        self.calls.append("list_audio_durations")
        return list(self.durations.get(book_id, []))

    async def record_search(self, user_id: str, query: str, result_count: int):
        self._write("record_search")
        self.searches.append((user_id, query, result_count))


class Router:
    """Maps (method, host+path) to canned responses and records requests."""

    def __init__(self):
        self.routes = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler):
        """``handler`` takes the request and returns an httpx.Response."""
        self.routes[(method, url)] = handler

    def json(self, method: str, url: str, payload, status_code: int = 200):
        self.add(method, url, lambda request: httpx.Response(status_code, json=payload))

    def text(self, method: str, url: str, body: str, status_code: int = 200):
        self.add(method, url, lambda request: httpx.Response(status_code, text=body))

    def count(self, method: str, url: str) -> int:
        return sum(1 for r in self.requests if r.method == method and f"{r.url.host}{r.url.path}" == url)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, f"{request.url.host}{request.url.path}"))
        if handler is None:
            return httpx.Response(404, json={"error": {"message": "no route"}})
        return handler(request)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def router():
    return Router()


@pytest.fixture
def config():
    cfg = Config()
    cfg.GOOGLE_BOOKS_API_KEY = "google-key"
    cfg.SPOTIFY_CLIENT_ID = "client-id"
    cfg.SPOTIFY_CLIENT_SECRET = "client-secret"
    cfg.AUTH_USER_URL = "https://auth.example.com/user"
    cfg.AUTH_API_KEY = None
    return cfg


@pytest.fixture
def http(router):
    return httpx.AsyncClient(transport=httpx.MockTransport(router))
