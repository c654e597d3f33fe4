"""Logging setup for the deckhand CLI.

Library modules log through ``logging.getLogger(__name__)``; only the CLI
configures handlers, via :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import os
import sys

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
VERBOSE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(threadName)s]: %(message)s"

# Third-party loggers that are noisy at DEBUG level
_QUIET_LIBRARIES = ("urllib3", "docker", "httpx", "httpcore", "paramiko")


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the deckhand namespace."""
    return logging.getLogger(name)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging for CLI use.

    Args:
        verbose: Enable DEBUG output for deckhand modules
        quiet: Only show errors

    The ``DECKHAND_LOG_LEVEL`` environment variable overrides both flags.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    env_level = os.environ.get("DECKHAND_LOG_LEVEL")
    if env_level:
        level = logging.getLevelName(env_level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT if verbose else DEFAULT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
