"""
Nango OAuth token broker

Zoho access tokens are held by Nango. ``NangoClient.get_token`` returns a
cached token while it is comfortably valid and refreshes it otherwise.
The cache is an injected object with its own clock so expiry can be tested
without waiting on wall-clock time.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from dateutil import parser as date_parser

from letterflow.config import get_settings
from letterflow.errors import AuthenticationError, LetterflowError
from letterflow.services.base import ApiClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CachedToken:
    access_token: str
    expires_at: Optional[datetime]


class TokenCache:
    """In-memory access-token cache keyed by connection id.

    An entry is served only while ``now < expires_at - expiry_buffer``.
    Tokens without an expiry never go stale on their own.
    """

    def __init__(self, expiry_buffer_seconds: int = 60, clock: Clock = _utc_now):
        self.expiry_buffer = timedelta(seconds=expiry_buffer_seconds)
        self.clock = clock
        self._entries: Dict[str, CachedToken] = {}

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self.clock() >= entry.expires_at - self.expiry_buffer:
            logger.debug("Cached token for %s is expiring, dropping it", key)
            del self._entries[key]
            return None
        return entry.access_token

    def put(self, key: str, access_token: str, expires_at: Optional[datetime]) -> None:
        self._entries[key] = CachedToken(access_token=access_token, expires_at=expires_at)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)


def extract_access_token(connection: Dict[str, Any]) -> str:
    """Pick the token out of a Nango connection payload by credential type"""
    credentials = connection.get("credentials") or {}
    credential_type = credentials.get("type")
    if credential_type == "OAUTH2":
        token = credentials.get("access_token")
    elif credential_type == "OAUTH1":
        token = credentials.get("oauth_token")
    else:
        token = (credentials.get("raw") or {}).get("access_token")
    if not token:
        raise AuthenticationError(
            f"No access token in Nango connection (credential type {credential_type!r})"
        )
    return token


def extract_expiry(connection: Dict[str, Any]) -> Optional[datetime]:
    expires_at = (connection.get("credentials") or {}).get("expires_at")
    if not expires_at:
        return None
    try:
        parsed = date_parser.isoparse(expires_at)
    except (ValueError, TypeError):
        logger.warning("Unparseable token expiry %r, treating token as non-expiring", expires_at)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class NangoClient(ApiClient):
    """Fetches OAuth tokens for CRM connections"""

    service_name = "Nango"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        cache: Optional[TokenCache] = None,
    ):
        super().__init__(base_url or settings.nango_base_url)
        self.secret_key = secret_key if secret_key is not None else settings.nango_secret_key
        self.cache = cache or TokenCache(settings.nango_expiry_buffer_seconds)

    async def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def get_token(
        self,
        connection_id: str,
        integration_id: str,
        force_refresh: bool = False,
    ) -> str:
        """
        Return a valid access token for a connection

        Args:
            connection_id: Nango connection id
            integration_id: Nango provider config key
            force_refresh: Skip the cache and ask Nango to refresh

        Raises:
            AuthenticationError: When no token can be obtained
        """
        if not force_refresh:
            cached = self.cache.get(connection_id)
            if cached:
                return cached

        params = {"provider_config_key": integration_id}
        if force_refresh:
            params["force_refresh"] = "true"

        logger.info("Fetching access token for connection %s", connection_id)
        try:
            connection = await self._request_json("GET", f"connection/{connection_id}", params=params)
        except AuthenticationError:
            raise
        except LetterflowError as e:
            raise AuthenticationError(f"Failed to fetch token from Nango: {e}") from e

        token = extract_access_token(connection)
        self.cache.put(connection_id, token, extract_expiry(connection))
        return token
