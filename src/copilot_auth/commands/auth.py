"""Auth commands -- log in, inspect, and use GitHub Copilot credentials.

Registered directly on the root :data:`~copilot_auth.app.app`::

    copilot-auth login      # device flow, saves ~/.copilot-auth.json
    copilot-auth status     # which credential would be used
    copilot-auth token      # print a short-lived Copilot API token
    copilot-auth paths      # where credentials are looked up
    copilot-auth logout     # remove the device-flow token file
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, TypeVar

import typer

from copilot_auth.auth import AuthManager, CredentialStore
from copilot_auth.config import get_config_paths, get_local_auth_path
from copilot_auth.exceptions import CopilotAuthError
from copilot_auth.exit_codes import EXIT_AUTH_FAILURE
from copilot_auth.models import AuthConfig
from copilot_auth.output import (
    debug,
    error,
    get_output,
    info,
    print_data,
    print_record,
    success,
    suggest,
    warning,
)

T = TypeVar("T")


def _config(ctx: typer.Context) -> AuthConfig:
    obj = ctx.obj or {}
    return obj.get("config") or AuthConfig()


def _manager(config: AuthConfig) -> AuthManager:
    debug(f"Resolving credentials for {config.domain}")
    manager = AuthManager(config)
    source = manager.credential_source.value if manager.credential_source else "none"
    debug(f"Credential source: {source}")
    return manager


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, turning auth errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except CopilotAuthError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def auth_login(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Run the device flow even if a credential exists."
    ),
) -> None:
    """Authorize this machine with GitHub using the device flow.

    Prints a verification URL and a one-time code, then waits until the
    code has been entered in a browser. The resulting OAuth token is saved
    to ``~/.copilot-auth.json`` for later runs.

    Example::

        copilot-auth login
    """
    manager = _manager(_config(ctx))
    if manager.has_oauth_token() and not force:
        source = manager.credential_source.value if manager.credential_source else "?"
        info(f"Already authenticated ({source}: {manager.masked_oauth_token()}).")
        suggest("Re-run with --force to authorize again.")
        return

    async def _login() -> bool:
        handle = await manager.initiate_device_flow()
        get_output().device_code_prompt(handle.verification_uri, handle.user_code)
        debug(f"Polling every {handle.session.poll_interval_seconds}s")
        authorized = await handle.poll_for_token()
        if not authorized:
            error(f"Authentication failed: {handle.session.error or 'unknown error'}")
        return authorized

    if not _run(_login()):
        suggest("Run `copilot-auth login` to try again.")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    success(f"Authentication successful! Token saved to {manager.store.local_path}.")


def auth_logout() -> None:
    """Remove the token saved by ``copilot-auth login``.

    Credentials managed by the editor plugins (``apps.json`` and
    ``hosts.json``) are left untouched.
    """
    store = CredentialStore()
    if store.clear():
        success(f"Removed {store.local_path}.")
    else:
        info("No saved device-flow token to remove.")


def auth_status(
    ctx: typer.Context,
    exchange: bool = typer.Option(
        False, "--exchange", "-x", help="Also exchange the credential for an API token."
    ),
) -> None:
    """Show which credential would be used, without printing it in full.

    Exits with code 3 when no credential is available.
    """
    config = _config(ctx)
    manager = _manager(config)

    record: dict[str, Any] = {
        "domain": config.domain,
        "source": manager.credential_source.value if manager.credential_source else None,
        "kind": manager.credential_kind.value if manager.credential_kind else None,
        "oauth_token": manager.masked_oauth_token(),
        "api_base_url": config.api_base_url,
    }

    if exchange and manager.has_oauth_token():
        debug(f"Exchanging at {config.endpoints.copilot_token_url}")
        _run(manager.get_valid_token())
        cached = manager.cached_token
        if cached is not None:
            record["api_token_expires_at"] = cached.expires_at_datetime.isoformat()

    print_record(record, title="Copilot credentials")

    if not manager.has_oauth_token():
        warning("No GitHub OAuth token found.")
        suggest("Authorize with: copilot-auth login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)


def auth_token(ctx: typer.Context) -> None:
    """Print a short-lived Copilot API token to stdout.

    Example::

        export COPILOT_TOKEN=$(copilot-auth token)
    """
    manager = _manager(_config(ctx))
    token = _run(manager.get_valid_token())
    print_data(token)
    cached = manager.cached_token
    if cached is not None:
        info(f"Expires at {cached.expires_at_datetime.isoformat()}")


def auth_paths() -> None:
    """Print where credentials are looked up, in precedence order."""
    paths = get_config_paths()
    local = get_local_auth_path()
    print_record(
        {
            "apps.json": str(paths.apps_json),
            "hosts.json": str(paths.hosts_json),
            "local": str(local),
        },
        title="Credential documents",
    )
