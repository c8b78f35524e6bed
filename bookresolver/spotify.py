"""Spotify audiobook catalog client."""
import logging
from typing import List, Optional

import httpx

from bookresolver.async_client import AsyncSourceClient
from bookresolver.credentials import CredentialCache
from bookresolver.models import AudiobookRecord, AudiobookSearchResult
from bookresolver.pagination import aggregate_pages, sum_field
from bookresolver.parse import parse_spotify_audiobook, parse_spotify_search

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 50


class SpotifyClient(AsyncSourceClient):
    """Audiobook search and lookup, authenticated through the credential cache."""

    name = "Spotify"
    BASE_URL = "https://api.spotify.com/v1"

    def __init__(
        self,
        credentials: CredentialCache,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10,
        market: str = "US",
    ):
        super().__init__(client=client, timeout=timeout)
        self.credentials = credentials
        self.market = market

    async def _auth_headers(self) -> dict:
        token = await self.credentials.get_token()
        return {"Authorization": f"Bearer {token}"}

    async def search_audiobooks(self, query: str, limit: int = 10) -> List[AudiobookSearchResult]:
        """
        Search the audiobook catalog.

        Args:
            query: Search query
            limit: Max results (capped at 50)

        Returns:
            Search hits in catalog order
        """
        data = await self.get_json(
            f"{self.BASE_URL}/search",
            params={
                "q": query,
                "type": "audiobook",
                "limit": max(1, min(limit, MAX_SEARCH_LIMIT)),
                "market": self.market,
            },
            headers=await self._auth_headers(),
        )
        results = parse_spotify_search(data)
        logger.info(f'Spotify search for "{query}" returned {len(results)} results')
        return results

    async def get_audiobook(self, audiobook_id: str) -> AudiobookRecord:
        """
        Fetch an audiobook with its total duration.

        The embedded chapter list is only the first page, so the duration
        is summed over every page of chapters.
        """
        headers = await self._auth_headers()
        data = await self.get_json(
            f"{self.BASE_URL}/audiobooks/{audiobook_id}",
            params={"market": self.market},
            headers=headers,
        )

        async def fetch_page(url: str) -> dict:
            return await self.get_json(url, headers=headers)

        total = await aggregate_pages(
            fetch_page,
            sum_field("duration_ms"),
            0,
            first_page=data.get("chapters"),
        )
        return parse_spotify_audiobook(data, audiobook_id, duration_ms=total)
