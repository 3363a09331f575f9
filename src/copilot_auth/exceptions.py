"""Exception hierarchy for copilot_auth.

All exceptions inherit from :class:`CopilotAuthError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`copilot_auth.exit_codes`. The CLI entry point in
:func:`copilot_auth.app.main` catches ``CopilotAuthError`` and exits with
the appropriate code.

Filesystem problems while reading credential documents and failures while
persisting a new credential are never raised; they are logged and absorbed
by :mod:`copilot_auth.auth.credential_store`. Device-flow polling outcomes
are reported as booleans rather than exceptions.

Subclass hierarchy::

    CopilotAuthError (exit 1)
    +-- ConfigError              (exit 1)
    +-- CredentialNotFoundError  (exit 3)
    +-- TokenExchangeError       (exit 3)
    +-- DeviceFlowError          (exit 3)
    +-- ConnectionError_         (exit 6)
"""

from __future__ import annotations

from copilot_auth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
)


class CopilotAuthError(Exception):
    """Base exception for all copilot_auth errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(CopilotAuthError):
    """Raised for invalid configuration values (e.g. a malformed enterprise URL)."""

    exit_code = EXIT_GENERIC_FAILURE


class CredentialNotFoundError(CopilotAuthError):
    """Raised when no long-lived OAuth credential is available for the token exchange."""

    exit_code = EXIT_AUTH_FAILURE


class _HTTPFailure(CopilotAuthError):
    """An error that carries the status code and raw body of a failed response."""

    exit_code = EXIT_AUTH_FAILURE

    def __init__(self, message: str, status_code: int, body: str):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenExchangeError(_HTTPFailure):
    """Raised when the Copilot token endpoint rejects the OAuth credential."""


class DeviceFlowError(_HTTPFailure):
    """Raised when the device-code request fails, before any polling starts."""


class ConnectionError_(CopilotAuthError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR
