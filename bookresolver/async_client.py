"""Async HTTP clients for the external catalogs."""
import asyncio
import httpx
from typing import Optional, Dict, Any
import logging

from bookresolver.errors import UpstreamNotFound, UpstreamTransientFailure
from bookresolver.models import BookRecord
from bookresolver.parse import parse_google_volume, parse_google_volumes_response

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/111.0.0.0 Safari/537.36"
)


class AsyncSourceClient:
    """Shared plumbing for one external source.

    Every call carries an explicit timeout. Failures are raised, never
    swallowed: a timeout, transport error, 5xx or unreadable body becomes
    UpstreamTransientFailure and a 404 becomes UpstreamNotFound, so the
    caller can treat any of them as "this strategy failed".
    """

    name = "source"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10,
        max_concurrent: int = 5
    ):
        """
        Initialize async client.

        Args:
            client: Shared httpx client (one is created if omitted)
            timeout: Request timeout in seconds
            max_concurrent: Maximum concurrent requests to this source
        """
        self.timeout = timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        kwargs.setdefault("timeout", self.timeout)
        async with self.semaphore:
            try:
                response = await self.client.request(method, url, **kwargs)
            except httpx.TimeoutException as e:
                raise UpstreamTransientFailure(f"{self.name} timed out: {e}") from e
            except httpx.HTTPError as e:
                raise UpstreamTransientFailure(f"{self.name} request failed: {e}") from e

        if response.status_code == 404:
            raise UpstreamNotFound(f"{self.name} returned 404 for {url}")
        if response.status_code >= 400:
            raise UpstreamTransientFailure(
                f"{self.name} error: {response.status_code} - {_error_message(response)}"
            )
        return response

    async def get_json(self, url: str, **kwargs) -> Dict[str, Any]:
        response = await self.request("GET", url, **kwargs)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamTransientFailure(f"{self.name} returned malformed JSON") from e
        if not isinstance(data, dict):
            raise UpstreamTransientFailure(f"{self.name} returned unexpected payload")
        return data

    async def get_text(self, url: str, **kwargs) -> str:
        response = await self.request("GET", url, **kwargs)
        return response.text

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "Unknown error"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or "Unknown error"
    return str(error or "Unknown error")


class AsyncGoogleBooksClient(AsyncSourceClient):
    """Async client for the Google Books volumes API."""

    name = "Google Books"
    BASE_URL = "https://www.googleapis.com/books/v1/volumes"

    def __init__(self, api_key: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key

    def _params(self, **params) -> Dict[str, Any]:
        if self.api_key:
            params["key"] = self.api_key
        return params

    async def search(self, query: str, max_results: int = 30) -> list:
        """
        Search for books by free text.

        Args:
            query: Search query
            max_results: Max results (API limit is 40)

        Returns:
            List of BookRecord list items
        """
        logger.info(f"Google Books search: {query}")
        data = await self.get_json(
            self.BASE_URL,
            params=self._params(q=query, maxResults=min(max_results, 40)),
            headers={"Accept": "application/json"},
        )
        return parse_google_volumes_response(data)

    async def search_by_isbn(self, isbn: str) -> BookRecord:
        """Return the most relevant volume for an ISBN."""
        clean_isbn = isbn.replace("-", "")
        data = await self.get_json(
            self.BASE_URL,
            params=self._params(q=f"isbn:{clean_isbn}"),
            headers={"Accept": "application/json"},
        )
        items = data.get("items") or []
        if not items:
            raise UpstreamNotFound("Book not found in Google Books")
        book = parse_google_volume(items[0])
        if book is None:
            raise UpstreamTransientFailure("Google Books returned a volume without an id")
        return book

    async def get_volume(self, volume_id: str) -> BookRecord:
        """Fetch one volume by its id."""
        data = await self.get_json(
            f"{self.BASE_URL}/{volume_id}",
            params=self._params(),
            headers={"Accept": "application/json"},
        )
        book = parse_google_volume(data)
        if book is None:
            raise UpstreamNotFound("Book not found in Google Books")
        return book
