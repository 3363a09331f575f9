"""Exchange a long-lived OAuth token for a short-lived Copilot API token."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from copilot_auth.config import COPILOT_HEADERS
from copilot_auth.exceptions import ConnectionError_, TokenExchangeError
from copilot_auth.models import CachedApiToken, CopilotTokenResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@asynccontextmanager
async def client_scope(
    client: Optional[httpx.AsyncClient],
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield *client* if given, otherwise a short-lived client closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as owned:
        yield owned


class TokenExchangeClient:
    """Calls ``GET /copilot_internal/v2/token`` with an OAuth bearer token.

    Args:
        token_url: The Copilot token endpoint for the configured domain.
        http_client: Optional shared client. When omitted, each exchange
            opens and closes its own client.
    """

    def __init__(
        self, token_url: str, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._token_url = token_url
        self._http_client = http_client

    async def exchange(self, oauth_token: str) -> CachedApiToken:
        """Exchange *oauth_token* for an API token.

        Returns:
            A :class:`~copilot_auth.models.CachedApiToken` whose
            ``expires_at`` is the server's ``expires_at`` converted from
            seconds to milliseconds.

        Raises:
            TokenExchangeError: On a non-2xx status (message includes the
                status code and the raw body) or an unparseable body.
            ConnectionError_: On transport failures.
        """
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {oauth_token}",
            **COPILOT_HEADERS,
        }
        try:
            async with client_scope(self._http_client) as client:
                response = await client.get(self._token_url, headers=headers)
        except httpx.HTTPError as exc:
            raise ConnectionError_(f"Token exchange request failed: {exc}") from exc

        if not response.is_success:
            raise TokenExchangeError(
                f"Token exchange failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = CopilotTokenResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise TokenExchangeError(
                f"Unexpected token exchange response ({response.status_code}): "
                f"{response.text}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        return CachedApiToken(token=data.token, expires_at=data.expires_at * 1000)
