"""Cache for the client-credentials bearer token."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from bookresolver.errors import CacheWriteFailure, ConfigurationUnavailable, UpstreamAuthError
from bookresolver.models import Credential

logger = logging.getLogger(__name__)

TOKEN_URL = "https://accounts.spotify.com/api/token"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialCache:
    """Reuse a stored bearer token until it is about to expire.

    The token lives in a single row of the external store, so warm
    process memory is never assumed. A token is reused only while it has
    more than ``refresh_buffer`` seconds left; otherwise it is exchanged
    for a new one and the row is replaced.
    """

    def __init__(
        self,
        store,
        client: httpx.AsyncClient,
        client_id: Optional[str],
        client_secret: Optional[str],
        token_url: str = TOKEN_URL,
        slot_id: int = 1,
        refresh_buffer: int = 60,
        timeout: float = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.slot_id = slot_id
        self.refresh_buffer = refresh_buffer
        self.timeout = timeout
        self.clock = clock

    async def get_token(self) -> str:
        """
        Return a usable bearer token.

        Returns:
            Access token string

        Raises:
            ConfigurationUnavailable: client id/secret not configured
            UpstreamAuthError: the exchange failed (not retried)
        """
        cached = await self.store.get_credential(self.slot_id)
        if cached and cached.is_fresh(self.clock(), self.refresh_buffer):
            return cached.access_token

        credential = await self._exchange()
        try:
            await self.store.upsert_credential(credential)
        except CacheWriteFailure as e:
            # The next request exchanges again
            logger.error(f"Failed to store refreshed token: {e.message}")
        return credential.access_token

    async def _exchange(self) -> Credential:
        if not self.client_id or not self.client_secret:
            raise ConfigurationUnavailable("Spotify client credentials not configured")

        logger.info("Refreshing client-credentials token")
        try:
            response = await self.client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise UpstreamAuthError(f"Failed to get Spotify token: {e}") from e

        if response.status_code != 200:
            raise UpstreamAuthError(f"Failed to get Spotify token: {response.status_code}")

        try:
            payload = response.json()
            token = payload["access_token"]
            lifetime = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamAuthError("Malformed token response") from e

        return Credential(
            slot_id=self.slot_id,
            access_token=token,
            expires_at=self.clock() + timedelta(seconds=lifetime),
        )
