"""Canonical Pydantic models shared across all copilot_auth modules.

This is the single source of truth for data shapes in the project. The
models fall into four groups:

**Configuration** -- supplied once by the caller:
    :class:`AuthConfig` and the derived :class:`Endpoints`.

**Credentials and tokens** -- owned by the auth subsystem:
    :class:`CredentialKind`, :class:`CredentialSource`,
    :class:`StoredCredential`, :class:`CachedApiToken`, and
    :class:`DeviceAuthorizationSession`.

**On-disk document schemas** -- validated independently, one model per
document family so that a malformed file is rejected as a whole entry
rather than partially read:
    :class:`AppsEntry`, :class:`HostsEntry`, :class:`LocalAuthDocument`.

**Wire models** -- JSON bodies returned by GitHub:
    :class:`CopilotTokenResponse`, :class:`DeviceCodeResponse`,
    :class:`DeviceAccessTokenResponse`.
"""

from __future__ import annotations

import enum
import time
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

EXPIRY_BUFFER_MS = 5 * 60 * 1000
"""Refresh the API token this long before it actually expires."""

OAUTH_TOKEN_PREFIX = "gho_"
USER_TOKEN_PREFIX = "ghu_"


# --- Configuration ---


class Endpoints(BaseModel):
    """The three GitHub endpoints used by the auth flow, derived from a domain."""

    model_config = ConfigDict(frozen=True)

    device_code_url: str
    access_token_url: str
    copilot_token_url: str


class AuthConfig(BaseModel):
    """Immutable configuration for :class:`~copilot_auth.auth.manager.AuthManager`.

    Every field is optional; ``AuthConfig()`` targets github.com and looks
    up the OAuth credential from the local Copilot configuration.

    Example::

        AuthConfig(enterprise_url="https://ghe.example.com", debug=True)
    """

    model_config = ConfigDict(frozen=True)

    oauth_token: Optional[str] = Field(
        default=None,
        description="Long-lived GitHub OAuth token (gho_...). Skips the on-disk lookup.",
    )
    enterprise_url: Optional[str] = Field(
        default=None, description="GitHub Enterprise URL; replaces github.com in all endpoints"
    )
    base_url: Optional[str] = Field(
        default=None, description="Override for the Copilot chat API base URL"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra headers added to every API request"
    )
    debug: bool = Field(default=False, description="Emit auth diagnostics to stderr")

    @property
    def domain(self) -> str:
        """The GitHub host credentials are looked up for (``github.com`` by default)."""
        from copilot_auth.config import DEFAULT_DOMAIN, normalize_domain

        if self.enterprise_url:
            return normalize_domain(self.enterprise_url)
        return DEFAULT_DOMAIN

    @property
    def endpoints(self) -> Endpoints:
        from copilot_auth.config import build_endpoints

        return build_endpoints(self.domain)

    @property
    def api_base_url(self) -> str:
        """Base URL for Copilot chat requests, honouring ``base_url`` and enterprise hosts."""
        from copilot_auth.config import DEFAULT_API_BASE_URL

        if self.base_url:
            return self.base_url
        if self.enterprise_url:
            return f"https://copilot-api.{self.domain}"
        return DEFAULT_API_BASE_URL


# --- Credentials and tokens ---


class CredentialKind(str, enum.Enum):
    """Class of a long-lived credential, derived from its token prefix."""

    OAUTH = "oauth"
    USER_DELEGATED = "user_delegated"

    @classmethod
    def from_token(cls, token: str) -> CredentialKind:
        if token.startswith(OAUTH_TOKEN_PREFIX):
            return cls.OAUTH
        return cls.USER_DELEGATED


class CredentialSource(str, enum.Enum):
    """Where a credential was found, in precedence order."""

    EXPLICIT = "explicit"
    APPS = "apps.json"
    HOSTS = "hosts.json"
    LOCAL = "local"


class StoredCredential(BaseModel):
    """A long-lived credential extracted from one credential document."""

    model_config = ConfigDict(frozen=True)

    host: str
    token: str
    kind: CredentialKind
    source: CredentialSource

    @classmethod
    def build(cls, host: str, token: str, source: CredentialSource) -> StoredCredential:
        return cls(
            host=host, token=token, kind=CredentialKind.from_token(token), source=source
        )

    @property
    def masked_token(self) -> str:
        return mask_token(self.token)


class CachedApiToken(BaseModel):
    """A short-lived Copilot API token with its expiry in epoch milliseconds.

    Instances are frozen: :class:`~copilot_auth.auth.manager.AuthManager`
    replaces the cached token wholesale after each exchange.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    expires_at: int = Field(description="Expiry as Unix time in milliseconds")

    def is_usable(
        self, now_ms: Optional[int] = None, buffer_ms: int = EXPIRY_BUFFER_MS
    ) -> bool:
        """Return ``True`` while ``now + buffer`` is still before the expiry."""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return self.expires_at > now_ms + buffer_ms

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at / 1000).astimezone()


class DeviceFlowStatus(str, enum.Enum):
    """Lifecycle of one device-authorization attempt."""

    REQUESTED = "requested"
    POLLING = "polling"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (
            DeviceFlowStatus.AUTHORIZED,
            DeviceFlowStatus.DENIED,
            DeviceFlowStatus.ERROR,
        )


class DeviceAuthorizationSession(BaseModel):
    """State of a single device flow. Never persisted."""

    device_code: str
    user_code: str
    verification_uri: str
    poll_interval_seconds: int = 5
    expires_in: Optional[int] = None
    status: DeviceFlowStatus = DeviceFlowStatus.REQUESTED
    error: Optional[str] = Field(
        default=None, description="Error code or reason for a DENIED/ERROR outcome"
    )


# --- On-disk document schemas ---


class AppsEntry(BaseModel):
    """One value in ``apps.json``, keyed by ``host`` or ``host:clientId``."""

    model_config = ConfigDict(extra="allow")

    oauth_token: str = Field(min_length=1)
    user: Optional[str] = None


class HostsEntry(BaseModel):
    """Nested value in ``hosts.json``, keyed by ``host``."""

    model_config = ConfigDict(extra="allow")

    oauth_token: str = Field(min_length=1)


class LocalAuthDocument(BaseModel):
    """The document written after a successful device-flow login."""

    oauth_token: str = Field(min_length=1)
    updated_at: Optional[datetime] = None


# --- Wire models ---


class CopilotTokenResponse(BaseModel):
    """Body of ``GET /copilot_internal/v2/token``."""

    model_config = ConfigDict(extra="allow")

    token: str
    expires_at: int = Field(description="Expiry as Unix time in seconds")
    refresh_in: Optional[int] = None


class DeviceCodeResponse(BaseModel):
    """Body of ``POST /login/device/code``."""

    model_config = ConfigDict(extra="allow")

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: Optional[int] = None
    interval: int = 5


class DeviceAccessTokenResponse(BaseModel):
    """Body of ``POST /login/oauth/access_token`` while polling."""

    model_config = ConfigDict(extra="allow")

    access_token: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


def mask_token(token: str, visible: int = 10) -> str:
    """Return the first *visible* characters of *token* followed by ``...``."""
    return f"{token[:visible]}..."
