"""HTTP client for the resolver endpoints with resilience patterns."""
import time
import random
import requests
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

RATE_LIMITED = 429


def _error_body(response: requests.Response) -> Dict[str, Any]:
    try:
        return response.json()
    except ValueError:
        return {"error": response.text}


class ResolverClient:
    """Client for the resolver API with timeouts, retries, and backoff.

    The endpoints never retry on their own; a caller that wants retries
    repeats the whole request, which is what this client does.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        base_backoff: float = 1.0
    ):
        """
        Initialize resolver client.

        Args:
            base_url: Root URL of the resolver API
            token: Bearer token sent with every request
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            base_backoff: Base delay for exponential backoff
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_backoff = base_backoff

        # Create session for connection pooling
        self.session = requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def get_book(
        self,
        isbn: Optional[str] = None,
        api_id: Optional[str] = None,
        google_volume_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Resolve one book by any of its identifiers."""
        body = {"isbn": isbn, "api_id": api_id, "google_volume_id": google_volume_id}
        return self._post_with_retry("/book-data", {k: v for k, v in body.items() if v is not None})

    def search_books(self, query: str) -> Optional[Dict[str, Any]]:
        """Search books across providers."""
        return self._post_with_retry("/book-search", {"query": query})

    def get_audiobook(
        self,
        audiobook_id: Optional[str] = None,
        book_id: Optional[str] = None,
        title: Optional[str] = None,
        author: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Resolve an audiobook by catalog id, book id or title."""
        body = {"audiobookId": audiobook_id, "bookId": book_id, "title": title, "author": author}
        return self._post_with_retry("/get-audiobook", {k: v for k, v in body.items() if v is not None})

    def search_audiobooks(self, query: str, limit: int = 10) -> Optional[Dict[str, Any]]:
        """Search the audiobook catalog."""
        return self._post_with_retry("/search-audiobooks", {"query": query, "limit": limit})

    def get_audible(self, title: str, author: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Look up an audiobook length on Audible."""
        body = {"title": title}
        if author:
            body["author"] = author
        return self._post_with_retry("/get-audiobook-audible", body)

    def _post_with_retry(self, path: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        POST a JSON body, repeating the whole request on transient failures.

        Rate limits, server errors, timeouts and dropped connections are
        retried. Any other 4xx is final and its error body is returned.

        Returns:
            Response JSON, or None once every attempt has failed
        """
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries):
            logger.info(f"POST {path} (attempt {attempt + 1}/{self.max_retries})")
            try:
                response = self.session.post(url, json=payload, timeout=self.timeout)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                reason = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if status == 200:
                    return response.json()
                if 400 <= status < 500 and status != RATE_LIMITED:
                    logger.error(f"{path} rejected the request ({status}): {response.text}")
                    return _error_body(response)
                reason = f"HTTP {status}"

            logger.warning(f"{path} attempt {attempt + 1} failed: {reason}")
            if attempt < self.max_retries - 1:
                self._backoff(attempt)

        logger.error(f"Giving up on {path} after {self.max_retries} attempts")
        return None

    def _backoff(self, attempt: int):
        """Sleep ``base_backoff * 2**attempt`` plus up to as much again in jitter."""
        delay = self.base_backoff * (2 ** attempt)
        total_delay = delay + random.uniform(0, delay)
        logger.info(f"Retrying in {total_delay:.2f}s")
        time.sleep(total_delay)

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
