"""
Unit tests for the shared HTTP plumbing and the Nango token broker

Tests:
- Retry with exponential backoff on 429/5xx
- Error translation to the workflow taxonomy
- Token cache expiry with an injected clock
- Token extraction per credential type
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import make_response
from letterflow.errors import AuthenticationError, ServiceUnavailableError
from letterflow.services.base import ApiClient
from letterflow.services.nango import NangoClient, TokenCache, extract_access_token, extract_expiry


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def api_client():
    return ApiClient("https://api.test/", max_retries=3)


class TestApiClientInit:
    def test_defaults(self, api_client):
        assert api_client.base_url == "https://api.test"
        assert api_client.timeout == 30.0
        assert api_client.max_retries == 3

    def test_url_joining(self, api_client):
        assert api_client._url("/tasks") == "https://api.test/tasks"
        assert api_client._url("https://other.test/x") == "https://other.test/x"


class TestMakeRequest:
    @pytest.mark.asyncio
    async def test_successful_request(self, api_client):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                return_value=make_response(200, json={"id": 1})
            )

            result = await api_client._request_json("GET", "items")

        assert result == {"id": 1}

    @pytest.mark.asyncio
    async def test_retry_on_rate_limit(self, api_client):
        with patch("httpx.AsyncClient") as mock_client:
            mock_request = AsyncMock(side_effect=[
                make_response(429),
                make_response(503),
                make_response(200, json={"id": 1}),
            ])
            mock_client.return_value.__aenter__.return_value.request = mock_request

            with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
                result = await api_client._request_json("GET", "items")

        assert result == {"id": 1}
        assert mock_request.call_count == 3
        assert [call.args[0] for call in mock_sleep.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_retry_exhaustion(self, api_client):
        with patch("httpx.AsyncClient") as mock_client:
            mock_request = AsyncMock(return_value=make_response(500, content=b"boom"))
            mock_client.return_value.__aenter__.return_value.request = mock_request

            with patch("asyncio.sleep", new_callable=AsyncMock):
                with pytest.raises(ServiceUnavailableError):
                    await api_client._make_request("GET", "items")

        assert mock_request.call_count == 3

    @pytest.mark.asyncio
    async def test_unauthorized_maps_to_authentication_error(self, api_client):
        with patch("httpx.AsyncClient") as mock_client:
            mock_request = AsyncMock(return_value=make_response(401))
            mock_client.return_value.__aenter__.return_value.request = mock_request

            with pytest.raises(AuthenticationError):
                await api_client._make_request("GET", "items")

        assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_allowed_status_is_returned(self, api_client):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                return_value=make_response(404)
            )

            response = await api_client._make_request("GET", "items", allow_status=(404,))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_transport_error(self, api_client):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                side_effect=httpx.ConnectError("refused")
            )

            with pytest.raises(ServiceUnavailableError):
                await api_client._make_request("GET", "items")


class TestTokenCache:
    def test_fresh_token_is_served(self):
        clock = FakeClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        cache = TokenCache(expiry_buffer_seconds=60, clock=clock)
        cache.put("conn", "tok", clock.now + timedelta(minutes=10))

        assert cache.get("conn") == "tok"

    def test_token_inside_buffer_is_dropped(self):
        clock = FakeClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        cache = TokenCache(expiry_buffer_seconds=60, clock=clock)
        cache.put("conn", "tok", clock.now + timedelta(minutes=10))

        clock.now += timedelta(minutes=9, seconds=30)

        assert cache.get("conn") is None

    def test_token_without_expiry_never_expires(self):
        clock = FakeClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        cache = TokenCache(clock=clock)
        cache.put("conn", "tok", None)
        clock.now += timedelta(days=365)

        assert cache.get("conn") == "tok"

    def test_invalidate(self):
        cache = TokenCache()
        cache.put("conn", "tok", None)
        cache.invalidate("conn")
        assert cache.get("conn") is None


class TestTokenExtraction:
    def test_oauth2(self):
        assert extract_access_token({"credentials": {"type": "OAUTH2", "access_token": "a"}}) == "a"

    def test_oauth1(self):
        assert extract_access_token({"credentials": {"type": "OAUTH1", "oauth_token": "b"}}) == "b"

    def test_raw_fallback(self):
        assert extract_access_token({"credentials": {"raw": {"access_token": "c"}}}) == "c"

    def test_missing_token(self):
        with pytest.raises(AuthenticationError):
            extract_access_token({"credentials": {"type": "OAUTH2"}})

    def test_expiry_parsing(self):
        expiry = extract_expiry({"credentials": {"expires_at": "2026-01-01T10:00:00Z"}})
        assert expiry == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)

    def test_unparseable_expiry(self):
        assert extract_expiry({"credentials": {"expires_at": "soon"}}) is None


class TestNangoClient:
    @pytest.fixture
    def connection(self):
        return {
            "credentials": {
                "type": "OAUTH2",
                "access_token": "zoho-token",
                "expires_at": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
            }
        }

    @pytest.mark.asyncio
    async def test_token_is_cached(self, connection):
        client = NangoClient(secret_key="secret", base_url="https://nango.test")
        with patch.object(client, "_request_json", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = connection

            assert await client.get_token("conn", "zoho-crm") == "zoho-token"
            assert await client.get_token("conn", "zoho-crm") == "zoho-token"

        assert mock_request.call_count == 1
        assert mock_request.call_args.args == ("GET", "connection/conn")
        assert mock_request.call_args.kwargs["params"] == {"provider_config_key": "zoho-crm"}

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, connection):
        client = NangoClient(secret_key="secret", base_url="https://nango.test")
        with patch.object(client, "_request_json", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = connection
            await client.get_token("conn", "zoho-crm")
            await client.get_token("conn", "zoho-crm", force_refresh=True)

        assert mock_request.call_count == 2
        assert mock_request.call_args.kwargs["params"]["force_refresh"] == "true"

    @pytest.mark.asyncio
    async def test_service_failure_becomes_authentication_error(self):
        client = NangoClient(secret_key="secret", base_url="https://nango.test")
        with patch.object(client, "_request_json", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = ServiceUnavailableError("down")

            with pytest.raises(AuthenticationError):
                await client.get_token("conn", "zoho-crm")

    @pytest.mark.asyncio
    async def test_bearer_header(self):
        client = NangoClient(secret_key="secret", base_url="https://nango.test")
        assert await client._headers() == {"Authorization": "Bearer secret"}
