"""copilot_auth -- GitHub Copilot credential discovery and API token lifecycle.

This package locates a long-lived GitHub OAuth credential on disk (the
Copilot editor plugins' ``apps.json``, the ``hosts.json`` fallback, or a
token saved by a previous device-flow login), exchanges it for a short-lived
Copilot API token, caches that token until shortly before expiry, and runs
the interactive device-authorization flow when no credential exists.

Typical usage::

    from copilot_auth import AuthConfig, create_copilot

    provider = create_copilot(AuthConfig())
    headers = await provider.request_headers()

Modules:
    models: Pydantic models shared across the package.
    config: Platform-aware credential paths and endpoint derivation.
    exceptions: Exception hierarchy with exit-code mapping.
    auth: Credential store, token exchange, device flow, and the auth manager.
    provider: Header production and the lazily-authorized provider wrapper.
    app: Typer CLI entry point.
"""

from copilot_auth.auth import AuthManager, CredentialStore, DeviceFlowHandle
from copilot_auth.config import get_config_paths
from copilot_auth.models import AuthConfig
from copilot_auth.provider import (
    CopilotProvider,
    DeviceFlowSetup,
    LazyCopilotProvider,
    create_copilot,
    create_copilot_with_device_flow,
)

__version__ = "0.1.0"

__all__ = [
    "AuthConfig",
    "AuthManager",
    "CopilotProvider",
    "CredentialStore",
    "DeviceFlowHandle",
    "DeviceFlowSetup",
    "LazyCopilotProvider",
    "create_copilot",
    "create_copilot_with_device_flow",
    "get_config_paths",
]
