"""Logging setup for the ``copilot_auth`` logger hierarchy.

Library modules only create module-level loggers via
``logging.getLogger(__name__)``; nothing is emitted unless a handler is
installed. :func:`configure_logging` installs a single Rich handler on
stderr, used by the CLI's ``--verbose`` flag and by ``AuthConfig(debug=True)``.
Only the CLI stops records from propagating to the root logger.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "copilot_auth"


def configure_logging(
    verbose: bool = False, no_color: bool = False, propagate: bool = False
) -> logging.Logger:
    """Attach a stderr :class:`~rich.logging.RichHandler` to the package logger.

    Calling this more than once replaces the previous handler rather than
    stacking them.

    Args:
        verbose: Log at ``DEBUG`` instead of ``WARNING``.
        no_color: Disable Rich colour output.
        propagate: Let records also reach handlers on parent loggers.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("[CopilotAuth] %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = propagate
    return logger
