"""Header production for Copilot API requests, and the lazily-authorized provider.

Request shaping (model routing, tool schema patches, streaming) belongs to
the caller. This module only turns a valid API token into the header set
the Copilot API expects:

* the Copilot client identification headers, then ``AuthConfig.headers``,
  then the caller's own headers (minus any ``Authorization`` /
  ``api-key`` / ``x-api-key``);
* ``Authorization: Bearer <api token>``, ``Openai-Intent`` and
  ``X-Initiator``;
* ``Copilot-Vision-Request: true`` when the caller says the request
  carries images.

Two providers share the :class:`BaseProvider` interface:

- :class:`CopilotProvider` -- backed by an authenticated
  :class:`~copilot_auth.auth.manager.AuthManager`.
- :class:`LazyCopilotProvider` -- handed out before a device flow
  completes; every call waits until authorization settles, then delegates
  to a :class:`CopilotProvider` built exactly once.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Mapping, Optional

import httpx

from copilot_auth.auth.manager import AuthManager
from copilot_auth.exceptions import CredentialNotFoundError
from copilot_auth.models import AuthConfig

_STRIPPED_HEADERS = frozenset({"authorization", "api-key", "x-api-key"})

OPENAI_INTENT = "conversation-edits"
INITIATOR = "agent"


def _merge_headers(target: dict[str, str], source: Mapping[str, str]) -> None:
    """Case-insensitively overlay *source* onto *target*, dropping credential headers."""
    for name, value in source.items():
        lowered = name.lower()
        if lowered in _STRIPPED_HEADERS:
            continue
        for existing in [k for k in target if k.lower() == lowered]:
            del target[existing]
        target[name] = value


class BaseProvider(ABC):
    """Common interface of the authenticated and the pending provider."""

    def __init__(self, config: AuthConfig) -> None:
        self._config = config

    @property
    def config(self) -> AuthConfig:
        return self._config

    @property
    def base_url(self) -> str:
        """Base URL of the Copilot chat API."""
        return self._config.api_base_url

    @abstractmethod
    async def request_headers(
        self, incoming: Optional[Mapping[str, str]] = None, *, vision: bool = False
    ) -> dict[str, str]:
        """Return the full header set for one Copilot API request.

        Args:
            incoming: Headers the caller already has for the request.
            vision: Add ``Copilot-Vision-Request: true``.

        Raises:
            CredentialNotFoundError: If no credential is available.
            TokenExchangeError: If the API token cannot be obtained.
        """
        ...

    @property
    def auth(self) -> CopilotAuth:
        """An :class:`httpx.Auth` that injects fresh headers into every request."""
        return CopilotAuth(self)

    def client(self, **kwargs: Any) -> httpx.AsyncClient:
        """Create an :class:`httpx.AsyncClient` bound to :attr:`base_url` and :attr:`auth`.

        Keyword arguments are forwarded to :class:`httpx.AsyncClient`.
        """
        kwargs.setdefault("timeout", 60.0)
        return httpx.AsyncClient(base_url=self.base_url, auth=self.auth, **kwargs)


class CopilotProvider(BaseProvider):
    """Produces Copilot request headers from an :class:`AuthManager`.

    Args:
        config: Auth configuration; defaults to the manager's.
        auth_manager: Manager to draw tokens from. Created from *config*
            when omitted.
    """

    def __init__(
        self,
        config: Optional[AuthConfig] = None,
        auth_manager: Optional[AuthManager] = None,
    ) -> None:
        if config is None:
            config = auth_manager.config if auth_manager is not None else AuthConfig()
        super().__init__(config)
        self._auth_manager = auth_manager or AuthManager(config)

    @property
    def auth_manager(self) -> AuthManager:
        return self._auth_manager

    async def request_headers(
        self, incoming: Optional[Mapping[str, str]] = None, *, vision: bool = False
    ) -> dict[str, str]:
        token = await self._auth_manager.get_valid_token()
        headers = self._auth_manager.get_copilot_headers()
        _merge_headers(headers, self._config.headers)
        if incoming:
            _merge_headers(headers, incoming)
        headers["Authorization"] = f"Bearer {token}"
        headers["Openai-Intent"] = OPENAI_INTENT
        headers["X-Initiator"] = INITIATOR
        if vision:
            headers["Copilot-Vision-Request"] = "true"
        return headers


class LazyCopilotProvider(BaseProvider):
    """Provider handed out while a device flow is still in progress.

    Calls wait until :meth:`settle` is invoked. After a successful
    authorization they delegate to a memoized :class:`CopilotProvider`;
    after a failed one they raise :class:`CredentialNotFoundError`.
    """

    def __init__(self, config: AuthConfig, auth_manager: AuthManager) -> None:
        super().__init__(config)
        self._auth_manager = auth_manager
        self._settled = asyncio.Event()
        self._provider: Optional[CopilotProvider] = None

    @property
    def is_settled(self) -> bool:
        return self._settled.is_set()

    @property
    def is_authorized(self) -> bool:
        return self._provider is not None

    def settle(self, authorized: bool) -> None:
        """Record the device-flow outcome. Only the first call has any effect."""
        if self._settled.is_set():
            return
        if authorized:
            self._provider = CopilotProvider(self._config, self._auth_manager)
        self._settled.set()

    async def resolve(self) -> CopilotProvider:
        """Wait for authorization and return the underlying provider."""
        await self._settled.wait()
        if self._provider is None:
            raise CredentialNotFoundError(
                "Device flow did not complete; run the login again to authorize."
            )
        return self._provider

    async def request_headers(
        self, incoming: Optional[Mapping[str, str]] = None, *, vision: bool = False
    ) -> dict[str, str]:
        provider = await self.resolve()
        return await provider.request_headers(incoming, vision=vision)


class CopilotAuth(httpx.Auth):
    """httpx auth flow that sets Copilot headers on each outgoing request.

    Only usable with :class:`httpx.AsyncClient`, since obtaining a token
    may require an awaited exchange.
    """

    def __init__(self, provider: BaseProvider) -> None:
        self._provider = provider

    def sync_auth_flow(self, request: httpx.Request):
        raise RuntimeError("CopilotAuth requires an httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        headers = await self._provider.request_headers()
        for name in [k for k in request.headers if k.lower() in _STRIPPED_HEADERS]:
            del request.headers[name]
        request.headers.update(headers)
        yield request


@dataclass
class DeviceFlowSetup:
    """Result of :func:`create_copilot_with_device_flow`.

    When a credential already existed, ``verification_uri`` and
    ``user_code`` are empty and ``wait_for_auth`` returns ``True`` at once.
    """

    provider: BaseProvider
    verification_uri: str
    user_code: str
    wait_for_auth: Callable[[], Awaitable[bool]]
    cancel: Callable[[], None]


def create_copilot(config: Optional[AuthConfig] = None) -> CopilotProvider:
    """Create a provider that authenticates from on-disk or explicit credentials."""
    return CopilotProvider(config or AuthConfig())


async def create_copilot_with_device_flow(
    config: Optional[AuthConfig] = None,
    *,
    auth_manager: Optional[AuthManager] = None,
) -> DeviceFlowSetup:
    """Create a provider, starting a device flow if no credential is available.

    The returned provider can be passed to collaborators immediately; its
    calls block until ``wait_for_auth()`` finishes.

    Args:
        config: Auth configuration. ``oauth_token`` is ignored in favour of
            discovery when left unset.
        auth_manager: Pre-built manager (mainly for tests).

    Raises:
        DeviceFlowError: If GitHub rejects the device-code request.
        ConnectionError_: On network failures.
    """
    manager = auth_manager or AuthManager(config)
    config = manager.config

    if manager.has_oauth_token():

        async def already_authorized() -> bool:
            return True

        return DeviceFlowSetup(
            provider=CopilotProvider(config, manager),
            verification_uri="",
            user_code="",
            wait_for_auth=already_authorized,
            cancel=lambda: None,
        )

    handle = await manager.initiate_device_flow()
    lazy = LazyCopilotProvider(config, manager)

    async def wait_for_auth() -> bool:
        authorized = False
        try:
            authorized = await handle.poll_for_token()
            return authorized
        finally:
            lazy.settle(authorized)

    return DeviceFlowSetup(
        provider=lazy,
        verification_uri=handle.verification_uri,
        user_code=handle.user_code,
        wait_for_auth=wait_for_auth,
        cancel=handle.cancel,
    )
