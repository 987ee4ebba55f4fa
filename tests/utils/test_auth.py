"""Tests for authentication header acquisition."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from contract_guard.utils.auth import AuthConfig, fetch_oauth2_token, obtain_auth_headers
from contract_guard.utils.errors import AuthenticationError


@pytest.fixture
def mock_httpx_response():
    """Create a mock httpx response."""

    def _create_response(status_code: int, json_data: dict | None = None):
        response = MagicMock()
        response.status_code = status_code
        if json_data is not None:
            response.json.return_value = json_data
        else:
            response.json.side_effect = json.JSONDecodeError("No JSON", "", 0)
        return response

    return _create_response


@pytest.fixture
def oauth2_config():
    """OAuth2 password-grant settings."""
    return AuthConfig(
        type="oauth2",
        username="tester",
        password="secret",
        token_url="https://auth.example.com/token",
    )


class TestAuthConfig:
    """Test AuthConfig validation."""

    def test_default_is_anonymous(self):
        """Test the default auth type is none."""
        assert AuthConfig().type == "none"

    def test_invalid_type(self):
        """Test unknown auth types are rejected."""
        with pytest.raises(ValueError, match="Unsupported auth type"):
            AuthConfig(type="basic")


class TestStaticHeaders:
    """Test schemes that need no network call."""

    @pytest.mark.asyncio
    async def test_none_config(self):
        """Test no config yields content negotiation headers only."""
        headers = await obtain_auth_headers(None)
        assert headers == {"Content-Type": "application/json", "Accept": "application/json"}

    @pytest.mark.asyncio
    async def test_bearer(self):
        """Test bearer tokens go into the Authorization header."""
        headers = await obtain_auth_headers(AuthConfig(type="bearer", token="abc"))
        assert headers["Authorization"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_apikey(self):
        """Test API keys go into the X-API-Key header."""
        headers = await obtain_auth_headers(AuthConfig(type="apikey", token="k-1"))
        assert headers["X-API-Key"] == "k-1"
        assert "Authorization" not in headers

    @pytest.mark.asyncio
    async def test_bearer_without_token(self):
        """Test a bearer config without a token adds nothing."""
        headers = await obtain_auth_headers(AuthConfig(type="bearer"))
        assert "Authorization" not in headers


class TestOAuth2:
    """Test OAuth2 token exchange."""

    @pytest.mark.asyncio
    async def test_successful_exchange(self, oauth2_config, mock_httpx_response):
        """Test a 200 response with access_token yields a bearer header."""
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_httpx_response(200, {"access_token": "tok-1"}))

        headers = await obtain_auth_headers(oauth2_config, client=client, timeout=5)

        assert headers["Authorization"] == "Bearer tok-1"
        args, kwargs = client.post.call_args
        assert args[0] == "https://auth.example.com/token"
        assert kwargs["data"] == {"grant_type": "password", "username": "tester", "password": "secret"}
        assert kwargs["timeout"] == 5

    @pytest.mark.asyncio
    async def test_non_200_status(self, oauth2_config, mock_httpx_response):
        """Test a rejected exchange raises with the server message and status."""
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_httpx_response(401, {"message": "Invalid credentials"}))

        with pytest.raises(AuthenticationError, match=r"\[401\]: Invalid credentials") as exc_info:
            await fetch_oauth2_token(oauth2_config, client=client)
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, oauth2_config, mock_httpx_response):
        """Test a non-JSON error body still raises a readable error."""
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_httpx_response(500))

        with pytest.raises(AuthenticationError, match="unexpected status"):
            await fetch_oauth2_token(oauth2_config, client=client)

    @pytest.mark.asyncio
    async def test_missing_access_token(self, oauth2_config, mock_httpx_response):
        """Test a 200 response without access_token raises."""
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_httpx_response(200, {"token_type": "bearer"}))

        with pytest.raises(AuthenticationError, match="No access_token"):
            await fetch_oauth2_token(oauth2_config, client=client)

    @pytest.mark.asyncio
    async def test_timeout(self, oauth2_config):
        """Test a timed out token request raises AuthenticationError."""
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ConnectTimeout("timed out"))

        with pytest.raises(AuthenticationError, match="timed out"):
            await fetch_oauth2_token(oauth2_config, client=client)

    @pytest.mark.asyncio
    async def test_connection_error(self, oauth2_config):
        """Test a transport failure raises AuthenticationError."""
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(AuthenticationError, match="request failed"):
            await fetch_oauth2_token(oauth2_config, client=client)

    @pytest.mark.asyncio
    async def test_missing_token_url(self):
        """Test OAuth2 without a token URL raises before any request."""
        with pytest.raises(AuthenticationError, match="token URL"):
            await fetch_oauth2_token(AuthConfig(type="oauth2", username="u", password="p"))

    @pytest.mark.asyncio
    async def test_password_grant_requires_credentials(self):
        """Test the password grant needs username and password."""
        config = AuthConfig(type="oauth2", token_url="https://auth.example.com/token")
        with pytest.raises(AuthenticationError, match="username and password"):
            await fetch_oauth2_token(config)

    @pytest.mark.asyncio
    async def test_client_credentials_grant(self, mock_httpx_response):
        """Test non-password grants send only the grant type."""
        config = AuthConfig(type="oauth2", token_url="https://auth.example.com/token", grant_type="client_credentials")
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_httpx_response(200, {"access_token": "cc"}))

        assert await fetch_oauth2_token(config, client=client) == "cc"
        assert client.post.call_args.kwargs["data"] == {"grant_type": "client_credentials"}
