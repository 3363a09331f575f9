"""Auth manager -- credential state, API token cache, and device-flow orchestration.

The :class:`AuthManager` is the central coordinator of the auth subsystem.
It owns exactly two pieces of mutable state:

* the effective long-lived OAuth token, resolved once at construction
  (explicit ``AuthConfig.oauth_token`` first, then
  :meth:`~copilot_auth.auth.credential_store.CredentialStore.resolve`) and
  replaced only by a successful device flow;
* the cached short-lived Copilot API token, replaced wholesale by each
  exchange.

Concurrent :meth:`AuthManager.get_valid_token` calls that miss the cache
share a single exchange request.

See Also:
    :class:`~copilot_auth.auth.exchange.TokenExchangeClient`
    :class:`~copilot_auth.auth.device_flow.DeviceFlowController`
    :class:`~copilot_auth.provider.CopilotProvider` -- consumes the token.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from copilot_auth.auth.credential_store import CredentialStore
from copilot_auth.auth.device_flow import DeviceFlowController, Sleep
from copilot_auth.auth.exchange import TokenExchangeClient
from copilot_auth.config import COPILOT_HEADERS
from copilot_auth.exceptions import CredentialNotFoundError
from copilot_auth.log import configure_logging
from copilot_auth.models import (
    AuthConfig,
    CachedApiToken,
    CredentialKind,
    CredentialSource,
    DeviceAuthorizationSession,
    mask_token,
)

logger = logging.getLogger(__name__)


@dataclass
class DeviceFlowHandle:
    """What the caller needs to show the user and wait for authorization.

    Network polling starts only when :meth:`poll_for_token` is awaited, so
    the code can be displayed first.

    Attributes:
        verification_uri: URL the user opens in a browser.
        user_code: Short code the user enters at ``verification_uri``.
        session: Live session state; ``session.status`` reflects progress.
    """

    verification_uri: str
    user_code: str
    session: DeviceAuthorizationSession
    _poll: Callable[[], Awaitable[bool]] = field(repr=False)
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    async def poll_for_token(self) -> bool:
        """Wait for the user to finish. Returns ``True`` once authorized.

        Once the session has ended, further calls return the same result
        without contacting GitHub.
        """
        return await self._poll()

    def cancel(self) -> None:
        """Stop a running :meth:`poll_for_token`; it then returns ``False``."""
        self._cancel_event.set()


class AuthManager:
    """Serve valid Copilot API tokens, exchanging and caching as needed.

    Args:
        config: Immutable auth configuration. Defaults to ``AuthConfig()``.
        store: Credential store; defaults to the platform locations.
        http_client: Optional shared :class:`httpx.AsyncClient` used for
            every GitHub request.
        sleep: Coroutine used between device-flow polls.

    Example::

        manager = AuthManager(AuthConfig())
        if not manager.has_oauth_token():
            handle = await manager.initiate_device_flow()
            print(handle.verification_uri, handle.user_code)
            await handle.poll_for_token()
        token = await manager.get_valid_token()
    """

    def __init__(
        self,
        config: Optional[AuthConfig] = None,
        *,
        store: Optional[CredentialStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or AuthConfig()
        if self._config.debug:
            configure_logging(verbose=True, propagate=True)

        endpoints = self._config.endpoints
        self._store = store or CredentialStore()
        self._exchange = TokenExchangeClient(endpoints.copilot_token_url, http_client)
        self._device_flow = DeviceFlowController(endpoints, http_client, sleep=sleep)

        self._cached_token: Optional[CachedApiToken] = None
        self._refresh_lock = asyncio.Lock()

        self._oauth_token: Optional[str] = None
        self._credential_source: Optional[CredentialSource] = None
        if self._config.oauth_token:
            self._oauth_token = self._config.oauth_token
            self._credential_source = CredentialSource.EXPLICIT
            logger.debug("Using provided OAuth token")
        else:
            credential = self._store.resolve(self._config.domain)
            if credential is not None:
                self._oauth_token = credential.token
                self._credential_source = credential.source
                logger.debug("Found OAuth token in %s", credential.source.value)
            else:
                logger.debug("No OAuth token found for %s", self._config.domain)

    @property
    def config(self) -> AuthConfig:
        return self._config

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def credential_source(self) -> Optional[CredentialSource]:
        """Where the effective OAuth token came from, or ``None`` if there is none."""
        return self._credential_source

    @property
    def credential_kind(self) -> Optional[CredentialKind]:
        if self._oauth_token is None:
            return None
        return CredentialKind.from_token(self._oauth_token)

    @property
    def cached_token(self) -> Optional[CachedApiToken]:
        return self._cached_token

    def has_oauth_token(self) -> bool:
        return self._oauth_token is not None

    def masked_oauth_token(self) -> Optional[str]:
        return mask_token(self._oauth_token) if self._oauth_token else None

    def invalidate(self) -> None:
        """Drop the cached API token so the next call exchanges again."""
        self._cached_token = None

    async def get_valid_token(self) -> str:
        """Return a Copilot API token that is not about to expire.

        A cached token is reused while it is more than five minutes from
        expiry. Otherwise the OAuth token is exchanged for a new one.

        Raises:
            CredentialNotFoundError: If no OAuth token is available.
            TokenExchangeError: If GitHub rejects the exchange.
            ConnectionError_: On network failures.
        """
        if self._cached_token is not None and self._cached_token.is_usable():
            logger.debug("Using cached Copilot token")
            return self._cached_token.token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock.
            if self._cached_token is not None and self._cached_token.is_usable():
                return self._cached_token.token

            if not self._oauth_token:
                raise CredentialNotFoundError(
                    "No OAuth token available. Run initiate_device_flow() first "
                    "(or `copilot-auth login`) or provide oauth_token in AuthConfig."
                )

            logger.debug("Exchanging OAuth token for Copilot token...")
            cached = await self._exchange.exchange(self._oauth_token)
            self._cached_token = cached
            logger.debug(
                "Copilot token obtained, expires at %s",
                cached.expires_at_datetime.isoformat(),
            )
            return cached.token

    async def initiate_device_flow(self) -> DeviceFlowHandle:
        """Request a device code and return a handle for completing the login.

        On success of :meth:`DeviceFlowHandle.poll_for_token` the new OAuth
        token is persisted via the credential store, becomes this manager's
        effective token, and any cached API token is discarded.

        Raises:
            DeviceFlowError: If the device-code request is rejected.
            ConnectionError_: On network failures.
        """
        session = await self._device_flow.request_code()
        cancel_event = asyncio.Event()
        outcome: Optional[bool] = None

        async def poll() -> bool:
            nonlocal outcome
            # A finished session keeps its first result.
            if outcome is not None:
                return outcome
            token = await self._device_flow.poll(session, cancel_event)
            if token is None:
                logger.debug("Device flow did not complete: %s", session.error)
                outcome = False
                return outcome
            self._store.persist(token)
            self._oauth_token = token
            self._credential_source = CredentialSource.LOCAL
            self._cached_token = None
            logger.debug("Device flow completed; OAuth token %s saved", mask_token(token))
            outcome = True
            return outcome

        return DeviceFlowHandle(
            verification_uri=session.verification_uri,
            user_code=session.user_code,
            session=session,
            _poll=poll,
            _cancel_event=cancel_event,
        )

    def get_copilot_headers(self) -> dict[str, str]:
        """Return a copy of the Copilot client identification headers."""
        return dict(COPILOT_HEADERS)
