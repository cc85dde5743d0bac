"""Logging handler writing one log file per session."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from spotshell.logging.formatters import SessionFileFormatter

LOG_FILE_MODE = 0o600


class SessionLogHandler(logging.FileHandler):
    """Append every record of a session to ``<log_dir>/<session_id>.log``.

    The file is created private to the user, since it names account
    resources and addresses.

    Parameters
    ----------
    log_dir : Path
        Directory holding session logs; created if missing
    session_id : str
        Session identifier used as the file name
    """

    def __init__(self, log_dir: Path, session_id: str) -> None:
        log_dir = Path(log_dir).expanduser()
        log_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self.path = log_dir / f"{session_id}.log"

        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, LOG_FILE_MODE)
        os.close(fd)

        super().__init__(self.path, mode="a", encoding="utf-8")
        self.setLevel(logging.DEBUG)
        self.setFormatter(SessionFileFormatter())

    def attach(self, logger: logging.Logger | None = None) -> SessionLogHandler:
        target = logger or logging.getLogger()
        target.addHandler(self)
        return self

    def detach(self, logger: logging.Logger | None = None) -> None:
        (logger or logging.getLogger()).removeHandler(self)
        self.close()
