"""Credential paths and endpoint derivation.

This module answers two questions without touching the filesystem:

* **Where are the credential documents?** -- The Copilot editor plugins
  keep ``apps.json`` and ``hosts.json`` in a per-user config directory
  (``%APPDATA%\\github-copilot`` on Windows, ``~/.config/github-copilot``
  elsewhere). Tokens obtained through our own device flow are kept in
  ``~/.copilot-auth.json``. See :func:`get_config_dir`,
  :func:`get_config_paths`, :func:`get_local_auth_path`.
* **Which URLs do we talk to?** -- All GitHub endpoints are templated on a
  domain so that GitHub Enterprise deployments work unchanged. See
  :func:`normalize_domain` and :func:`build_endpoints`.

Every function here is pure path or string computation, which makes them
safe to call for diagnostics (``copilot-auth paths``).
"""

from __future__ import annotations

import os
import platform
import re
from pathlib import Path
from typing import NamedTuple

from copilot_auth.exceptions import ConfigError
from copilot_auth.models import Endpoints

_APP_DIR_NAME = "github-copilot"
_APPS_FILENAME = "apps.json"
_HOSTS_FILENAME = "hosts.json"
_LOCAL_AUTH_FILENAME = ".copilot-auth.json"

DEFAULT_DOMAIN = "github.com"
DEFAULT_API_BASE_URL = "https://api.githubcopilot.com"

CLIENT_ID = "Iv1.b507a08c87ecfe98"
"""OAuth App client ID used by the Copilot editor plugins."""

DEVICE_FLOW_SCOPE = "read:user"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

COPILOT_HEADERS: dict[str, str] = {
    "User-Agent": "GitHubCopilotChat/0.32.4",
    "Editor-Version": "vscode/1.105.1",
    "Editor-Plugin-Version": "copilot-chat/0.32.4",
    "Copilot-Integration-Id": "vscode-chat",
}
"""Client identification headers sent to the Copilot token and chat endpoints."""

DEVICE_FLOW_USER_AGENT = "GitHubCopilotChat/0.35.0"


class ConfigPaths(NamedTuple):
    """Locations of the two editor-plugin credential documents."""

    apps_json: Path
    hosts_json: Path


# --- Path resolution ---


def _is_windows() -> bool:
    return platform.system() == "Windows"


def get_config_dir() -> Path:
    """Return the Copilot editor-plugin configuration directory.

    On Windows: ``$APPDATA/github-copilot`` (default
    ``~/AppData/Roaming/github-copilot``).
    Elsewhere: ``~/.config/github-copilot``.

    The directory is not created; callers only read from it.
    """
    home = Path.home()
    if _is_windows():
        appdata = os.environ.get("APPDATA", "")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / _APP_DIR_NAME
    return home / ".config" / _APP_DIR_NAME


def get_config_paths() -> ConfigPaths:
    """Return the paths of ``apps.json`` and ``hosts.json``, whether or not they exist."""
    config_dir = get_config_dir()
    return ConfigPaths(
        apps_json=config_dir / _APPS_FILENAME,
        hosts_json=config_dir / _HOSTS_FILENAME,
    )


def get_local_auth_path() -> Path:
    """Return the path of the token file written by a device-flow login."""
    return Path.home() / _LOCAL_AUTH_FILENAME


# --- Endpoints ---


_SCHEME_RE = re.compile(r"^https?://")


def normalize_domain(url: str) -> str:
    """Reduce a GitHub URL to its bare host.

    Raises:
        ConfigError: If nothing remains once the scheme is removed.

    Example::

        >>> normalize_domain("https://ghe.example.com/")
        'ghe.example.com'
    """
    domain = _SCHEME_RE.sub("", url.strip()).rstrip("/")
    if not domain:
        raise ConfigError(f"Invalid enterprise URL: {url!r}")
    return domain


def build_endpoints(domain: str) -> Endpoints:
    """Return the device-code, access-token, and Copilot token URLs for *domain*."""
    return Endpoints(
        device_code_url=f"https://{domain}/login/device/code",
        access_token_url=f"https://{domain}/login/oauth/access_token",
        copilot_token_url=f"https://api.{domain}/copilot_internal/v2/token",
    )
