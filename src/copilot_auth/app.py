"""Typer application and CLI entry point for copilot-auth.

This module wires the root Typer application, registers the auth commands
from :mod:`copilot_auth.commands.auth`, and builds the shared
:class:`~copilot_auth.models.AuthConfig` from global options and
environment variables.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled exceptions are written to a crash log under
the user's home directory.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer

from copilot_auth import __version__
from copilot_auth.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INTERRUPTED

app = typer.Typer(
    name="copilot-auth",
    help="Find, exchange, and obtain GitHub Copilot credentials.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

from copilot_auth.commands.auth import (  # noqa: E402
    auth_login,
    auth_logout,
    auth_paths,
    auth_status,
    auth_token,
)

app.command("login")(auth_login)
app.command("logout")(auth_logout)
app.command("status")(auth_status)
app.command("token")(auth_token)
app.command("paths")(auth_paths)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"copilot-auth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        envvar="GITHUB_COPILOT_OAUTH_TOKEN",
        help="GitHub OAuth token to use instead of the on-disk lookup.",
        show_default=False,
    ),
    enterprise_url: Optional[str] = typer.Option(
        None,
        "--enterprise-url",
        envvar="GITHUB_COPILOT_ENTERPRISE_URL",
        help="GitHub Enterprise URL (defaults to github.com).",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~copilot_auth.output.OutputManager`,
    enables debug logging for ``--verbose``, and stores the
    :class:`~copilot_auth.models.AuthConfig` in ``ctx.obj["config"]``.
    """
    from copilot_auth.config import normalize_domain
    from copilot_auth.exceptions import ConfigError
    from copilot_auth.log import configure_logging
    from copilot_auth.models import AuthConfig
    from copilot_auth.output import OutputFormat, OutputManager, error, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    configure_logging(verbose=verbose, no_color=output.no_color)

    if enterprise_url:
        try:
            normalize_domain(enterprise_url)
        except ConfigError as exc:
            error(str(exc))
            raise typer.Exit(code=exc.exit_code) from None
    config = AuthConfig(oauth_token=token or None, enterprise_url=enterprise_url)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to ``~/.copilot-auth-logs/`` and return its path."""
    logs_dir = Path.home() / ".copilot-auth-logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``copilot-auth`` console script.

    :class:`~copilot_auth.exceptions.CopilotAuthError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as exc:
        from copilot_auth.exceptions import CopilotAuthError
        from copilot_auth.output import error

        if isinstance(exc, CopilotAuthError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
