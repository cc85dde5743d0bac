"""Logging formatters for console and session log output."""

import logging


class SessionFormatter(logging.Formatter):
    """Formatter that prefixes messages with the wall-clock time.

    Records carrying ``stream="stdout"`` or ``stream="stderr"`` in their
    extras are tagged, so relayed remote output stays distinguishable.
    """

    def __init__(self, fmt: str = "[%(asctime)s] %(message)s") -> None:
        super().__init__(fmt=fmt, datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with stream prefix if present.

        Parameters
        ----------
        record : logging.LogRecord
            Log record to format

        Returns
        -------
        str
            Formatted log message with optional stream prefix
        """
        msg = super().format(record)
        stream = getattr(record, "stream", None)

        if stream in ("stdout", "stderr"):
            return f"[{stream}] {msg}"

        return msg


class SessionFileFormatter(logging.Formatter):
    """Verbose formatter for the per-session log file."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
