from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from roam_auth.auth.api_client import ApiClient
from roam_auth.auth.exceptions import NetworkError, UnauthenticatedError
from roam_auth.auth.identity import UserType


def response(status=200, payload=None):
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=resp)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.fixture
def http():
    mock = MagicMock(spec=aiohttp.ClientSession)
    mock.close = AsyncMock()
    return mock


class TestCredential:
    """Ownership of the shared bearer credential."""

    def test_set_and_clear(self):
        client = ApiClient("http://api.example.com/")
        client.set_auth_token("tok", owner=UserType.CUSTOMER)

        assert client.headers()["Authorization"] == "Bearer tok"
        assert client.owner is UserType.CUSTOMER
        assert client.clear_auth_token() is True
        assert "Authorization" not in client.headers()

    def test_clear_by_other_owner_is_ignored(self):
        client = ApiClient("http://api.example.com")
        client.set_auth_token("tok", owner=UserType.PROVIDER)

        assert client.clear_auth_token(owner=UserType.CUSTOMER) is False
        assert client.auth_token == "tok"
        assert client.clear_auth_token(owner=UserType.PROVIDER) is True
        assert client.auth_token is None

    def test_clear_without_token(self):
        assert ApiClient("http://api.example.com").clear_auth_token() is False


@pytest.mark.asyncio
class TestRequests:

    async def test_request_sends_bearer(self, http):
        client = ApiClient("http://api.example.com/", session=http)
        client.set_auth_token("tok")
        http.request.return_value = response(200, {"ok": True})

        result = await client.request("GET", "/bookings", params={"page": 1})

        args, kwargs = http.request.call_args
        assert args == ("GET", "http://api.example.com/bookings")
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["params"] == {"page": 1}
        assert result == {"ok": True}

    async def test_no_content(self, http):
        client = ApiClient("http://api.example.com", session=http)
        http.request.return_value = response(204)
        assert await client.request("DELETE", "bookings/1") is None

    async def test_error_status_is_classified(self, http):
        client = ApiClient("http://api.example.com", session=http)
        http.request.return_value = response(401, {"message": "Invalid token"})

        with pytest.raises(UnauthenticatedError):
            await client.request("GET", "me")

    async def test_transport_error(self, http):
        client = ApiClient("http://api.example.com", session=http)
        http.request.side_effect = aiohttp.ServerDisconnectedError()

        with pytest.raises(NetworkError):
            await client.request("GET", "me")

    async def test_close_keeps_injected_session(self, http):
        client = ApiClient("http://api.example.com", session=http)
        await client.close()
        http.close.assert_not_called()
