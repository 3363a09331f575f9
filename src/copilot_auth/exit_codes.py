"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~copilot_auth.exceptions.CopilotAuthError` subclass.
Shell wrappers can inspect the exit code to tell a missing credential
apart from a network outage without parsing stderr.

Example::

    $ copilot-auth token
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no credential, or the exchange was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_AUTH_FAILURE = 3
"""No credential was available, or GitHub rejected it."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_INTERRUPTED = 130
"""The user pressed Ctrl-C."""
