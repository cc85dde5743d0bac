"""Logging configuration for spotshell."""

from __future__ import annotations

import logging
import sys

from spotshell.logging.filters import StreamRoutingFilter
from spotshell.logging.formatters import SessionFileFormatter, SessionFormatter
from spotshell.logging.handlers import SessionLogHandler

QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "paramiko")


def configure_logging(verbose: bool = False) -> None:
    """Install the stdout/stderr console handlers on the root logger.

    Parameters
    ----------
    verbose : bool
        Log DEBUG records instead of INFO
    """
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(SessionFormatter())
    stdout_handler.addFilter(StreamRoutingFilter("stdout"))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(SessionFormatter())
    stderr_handler.addFilter(StreamRoutingFilter("stderr"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=[stdout_handler, stderr_handler],
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = [
    "SessionFileFormatter",
    "SessionFormatter",
    "SessionLogHandler",
    "StreamRoutingFilter",
    "configure_logging",
]
