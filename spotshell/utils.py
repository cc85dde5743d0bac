"""Utility functions for spotshell."""

import fcntl
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any

from spotshell.constants import (
    RESOURCE_NAME_PATTERN,
    SECONDS_PER_HOUR,
    SECONDS_PER_MINUTE,
)
from spotshell.core.exceptions import ValidationError


def validate_resource_name(name: Any, kind: str = "resource name") -> str:
    """Reject names outside the alphanumeric, dash and underscore allow-list.

    Names are checked before they reach a file path or provider call.

    Parameters
    ----------
    name : Any
        Candidate name
    kind : str
        What the name identifies, used in the error message

    Returns
    -------
    str
        The unchanged name

    Raises
    ------
    ValidationError
        If the name is not a string matching the allow-list
    """
    if not isinstance(name, str) or not re.fullmatch(RESOURCE_NAME_PATTERN, name):
        raise ValidationError(
            f"Invalid {kind} {name!r}: use 1-128 letters, digits, '-' or '_'"
        )
    return name


def validate_port(port: int) -> None:
    """Validate port number is in valid range.

    Raises
    ------
    ValidationError
        If port is not in valid range 1-65535
    """
    if isinstance(port, bool) or not isinstance(port, int) or port < 1 or port > 65535:
        raise ValidationError(f"Port must be between 1-65535, got {port}")


def format_duration(seconds: float) -> str:
    """Format a duration as ``1h 02m 03s``, ``2m 03s`` or ``3s``."""
    seconds = max(int(seconds), 0)
    hours, remainder = divmod(seconds, SECONDS_PER_HOUR)
    minutes, secs = divmod(remainder, SECONDS_PER_MINUTE)

    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def log_and_print_error(message: str, *args: Any) -> None:
    """Log error message and print to stderr.

    Parameters
    ----------
    message : str
        Error message with optional format placeholders
    *args : Any
        Format arguments for message
    """
    logging.error(message, *args)
    formatted_msg = message % args if args else message
    print(f"Error: {formatted_msg}", file=sys.stderr)


def atomic_file_write(path: Path, content: str, mode: int = 0o644) -> None:
    """Write a file atomically with its final permissions set from the start.

    The content goes to a temporary sibling created with ``mode``, which is
    then renamed over ``path`` under an exclusive lock. The target never
    exists with looser permissions or partial content.

    Parameters
    ----------
    path : Path
        Target file path
    content : str
        File content to write
    mode : int
        Permission bits of the new file

    Raises
    ------
    OSError
        Propagated after the temporary file is removed
    """
    temp_path = path.with_name(f".{path.name}.tmp")
    lock_path = path.with_name(f".{path.name}.lock")

    try:
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                # A leftover temp file keeps its old mode; start from a fresh one
                try:
                    temp_path.unlink()
                except FileNotFoundError:
                    pass
                fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
                with os.fdopen(fd, "w") as f:
                    f.write(content)
                os.chmod(temp_path, mode)
                os.replace(temp_path, path)
            except OSError:
                if temp_path.exists():
                    temp_path.unlink()
                raise
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
    finally:
        try:
            lock_path.unlink()
        except OSError:
            pass
