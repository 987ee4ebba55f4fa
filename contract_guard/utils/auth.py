"""Credential acquisition for API requests.

Supports:
- Bearer tokens (``Authorization: Bearer <token>``)
- API keys (``X-API-Key: <token>``)
- OAuth2 token exchange against a token endpoint (password grant by default)
"""

import logging
from dataclasses import dataclass

import httpx

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

AUTH_TYPES = ("none", "bearer", "apikey", "oauth2")

BASE_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


@dataclass(frozen=True)
class AuthConfig:
    """Authentication settings for one run."""

    type: str = "none"
    token: str | None = None
    username: str | None = None
    password: str | None = None
    token_url: str | None = None
    grant_type: str = "password"

    def __post_init__(self) -> None:
        if self.type not in AUTH_TYPES:
            raise ValueError(f"Unsupported auth type: {self.type} (expected one of {', '.join(AUTH_TYPES)})")


async def obtain_auth_headers(
    config: AuthConfig | None,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30,
) -> dict[str, str]:
    """Build request headers for the configured authentication scheme.

    Args:
        config: Authentication settings, None for anonymous requests
        client: HTTP client used for the OAuth2 token exchange
        timeout: Token request timeout in seconds

    Returns:
        Header map including content negotiation headers

    Raises:
        AuthenticationError: If an OAuth2 token cannot be obtained
    """
    headers = dict(BASE_HEADERS)

    if config is None:
        return headers

    if config.type == "oauth2":
        token = await fetch_oauth2_token(config, client=client, timeout=timeout)
        headers["Authorization"] = f"Bearer {token}"
    elif config.type == "bearer" and config.token:
        headers["Authorization"] = f"Bearer {config.token}"
    elif config.type == "apikey" and config.token:
        headers["X-API-Key"] = config.token

    return headers


async def fetch_oauth2_token(
    config: AuthConfig,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30,
) -> str:
    """Exchange credentials for an access token."""
    if not config.token_url:
        raise AuthenticationError("OAuth2 requires a token URL")

    form = {"grant_type": config.grant_type}
    if config.grant_type == "password":
        if not config.username or not config.password:
            raise AuthenticationError("OAuth2 password grant requires username and password")
        form["username"] = config.username
        form["password"] = config.password

    if client is None:
        async with httpx.AsyncClient(follow_redirects=True) as own_client:
            return await _request_token(own_client, config.token_url, form, timeout)

    return await _request_token(client, config.token_url, form, timeout)


async def _request_token(
    client: httpx.AsyncClient,
    token_url: str,
    form: dict[str, str],
    timeout: float,
) -> str:
    logger.debug("Requesting OAuth2 token from %s", token_url)

    try:
        response = await client.post(
            token_url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=timeout,
        )
    except httpx.TimeoutException as e:
        raise AuthenticationError("OAuth2 token request timed out") from e
    except httpx.RequestError as e:
        raise AuthenticationError(f"OAuth2 token request failed: {e}") from e

    try:
        body = response.json()
    except ValueError:
        body = None

    if response.status_code != 200:
        message = body.get("message") if isinstance(body, dict) else None
        raise AuthenticationError(
            f"OAuth2 authentication failed [{response.status_code}]: {message or 'unexpected status'}",
            status=response.status_code,
        )

    token = body.get("access_token") if isinstance(body, dict) else None
    if not token:
        raise AuthenticationError("No access_token in response", status=response.status_code)

    logger.debug("OAuth2 token obtained")
    return str(token)
