"""Credential discovery, token exchange, and device-flow login.

The main entry points are:

- :class:`AuthManager` -- resolves the OAuth credential once, serves cached
  Copilot API tokens, and runs the device flow.
- :class:`CredentialStore` -- reads ``apps.json`` / ``hosts.json`` / the
  local token file and persists device-flow tokens.
- :class:`TokenExchangeClient` -- OAuth token -> Copilot API token.
- :class:`DeviceFlowController` -- :rfc:`8628` device authorization.

Typical usage::

    from copilot_auth.auth import AuthManager

    manager = AuthManager()
    token = await manager.get_valid_token()
"""

from copilot_auth.auth.credential_store import CredentialStore
from copilot_auth.auth.device_flow import DeviceFlowController
from copilot_auth.auth.exchange import TokenExchangeClient
from copilot_auth.auth.manager import AuthManager, DeviceFlowHandle

__all__ = [
    "AuthManager",
    "CredentialStore",
    "DeviceFlowController",
    "DeviceFlowHandle",
    "TokenExchangeClient",
]
