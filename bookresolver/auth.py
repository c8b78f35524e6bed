"""Bearer-token verification against the external identity service."""
import logging
from typing import Optional

import httpx

from bookresolver.config import Config
from bookresolver.errors import AuthenticationError, ConfigurationUnavailable

logger = logging.getLogger(__name__)


async def verify_bearer(authorization: Optional[str], http: httpx.AsyncClient, config: Config) -> str:
    """
    Exchange a bearer token for the id of the user it belongs to.

    Args:
        authorization: Raw ``Authorization`` header
        http: Shared httpx client
        config: Configuration holding the identity endpoint

    Returns:
        User id

    Raises:
        AuthenticationError: header missing, not a bearer token, or rejected
        ConfigurationUnavailable: no identity endpoint configured
    """
    if not authorization:
        raise AuthenticationError("Authorization header missing")
    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Authentication failed")

    if not config.AUTH_USER_URL:
        raise ConfigurationUnavailable("Identity service not configured")

    headers = {"Authorization": authorization}
    if config.AUTH_API_KEY:
        headers["apikey"] = config.AUTH_API_KEY

    try:
        response = await http.get(config.AUTH_USER_URL, headers=headers, timeout=config.DEFAULT_TIMEOUT)
    except httpx.HTTPError as e:
        logger.error(f"Identity service unreachable: {e}")
        raise AuthenticationError("Authentication failed") from e

    if not response.is_success:
        logger.info(f"Identity service rejected token: {response.status_code}")
        raise AuthenticationError("Authentication failed")

    try:
        user_id = response.json().get("id")
    except (ValueError, AttributeError):
        user_id = None
    if not user_id:
        raise AuthenticationError("Authentication failed")
    return str(user_id)
