"""Logging filters for routing records to stdout or stderr."""

import logging


class StreamRoutingFilter(logging.Filter):
    """Route progress to stdout and problems to stderr.

    Parameters
    ----------
    stream_type : str
        Stream this filter admits records for: "stdout" or "stderr"
    """

    def __init__(self, stream_type: str) -> None:
        super().__init__()
        if stream_type not in ("stdout", "stderr"):
            raise ValueError(f"stream_type must be 'stdout' or 'stderr', got {stream_type!r}")
        self.stream_type = stream_type

    def filter(self, record: logging.LogRecord) -> bool:
        """Decide whether ``record`` belongs to this stream.

        An explicit ``stream`` extra wins; otherwise records below WARNING
        go to stdout and the rest to stderr.

        Parameters
        ----------
        record : logging.LogRecord
            Log record to filter

        Returns
        -------
        bool
            True if record should be emitted by this handler
        """
        record_stream = getattr(record, "stream", None)

        if record_stream is None:
            record_stream = "stderr" if record.levelno >= logging.WARNING else "stdout"

        return record_stream == self.stream_type
