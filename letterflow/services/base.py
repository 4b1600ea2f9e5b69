"""
Shared HTTP plumbing for collaborator clients

Every client talks to its service through ``_make_request``, which retries
rate limits and server errors with exponential backoff and translates the
remaining failures into the workflow error taxonomy.
"""
import asyncio
from typing import Any, Dict, Iterable, Optional

import httpx

from letterflow.errors import AuthenticationError, ServiceUnavailableError
from letterflow.utils.logger import get_logger

logger = get_logger(__name__)

RETRY_STATUS_CODES = [429, 500, 502, 503, 504]


class ApiClient:
    """
    Base class for async HTTP clients with retry logic and error handling
    """

    service_name = "service"

    def __init__(self, base_url: str, timeout: float = 30.0, max_retries: int = 3):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries

    async def _headers(self) -> Dict[str, str]:
        """Per-request headers (authentication etc.)"""
        return {}

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        allow_status: Iterable[int] = (),
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic

        Args:
            method: HTTP method (GET, POST, PUT, etc.)
            endpoint: Path relative to base_url, or an absolute URL
            allow_status: Non-2xx status codes returned to the caller as-is
            **kwargs: Additional arguments for httpx

        Returns:
            The httpx response

        Raises:
            AuthenticationError: On 401/403
            ServiceUnavailableError: On other HTTP or transport errors after retries
        """
        url = self._url(endpoint)
        allowed = set(allow_status)
        headers = {**(await self._headers()), **kwargs.pop("headers", {})}

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method=method,
                        url=url,
                        headers=headers,
                        **kwargs
                    )
                    if response.status_code in allowed:
                        return response
                    response.raise_for_status()
                    return response

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code in RETRY_STATUS_CODES and attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt  # Exponential backoff
                    logger.warning(
                        f"{self.service_name} request failed (attempt {attempt + 1}/{self.max_retries}), "
                        f"retrying in {wait_time}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                if status_code in (401, 403):
                    raise AuthenticationError(
                        f"{self.service_name} rejected credentials (HTTP {status_code})"
                    ) from e
                raise ServiceUnavailableError(
                    f"{self.service_name} returned HTTP {status_code}: {_error_text(e.response)}"
                ) from e
            except httpx.HTTPError as e:
                logger.error(f"{self.service_name} request failed: {e}")
                raise ServiceUnavailableError(f"{self.service_name} unreachable: {e}") from e

        raise ServiceUnavailableError(f"{self.service_name} request failed after {self.max_retries} attempts")

    async def _request_json(self, method: str, endpoint: str, **kwargs) -> Any:
        response = await self._make_request(method, endpoint, **kwargs)
        return response.json()


def _error_text(response: Optional[httpx.Response]) -> str:
    if response is None:
        return ""
    try:
        return response.text[:500]
    except Exception:  # pragma: no cover - mocked/undecodable body
        return ""
